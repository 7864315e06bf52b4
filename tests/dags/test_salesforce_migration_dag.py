"""
Tests for the Salesforce to PostgreSQL Migration DAG

Validates DAG structure, parameters and identifier validation.
"""

import os
import sys
import pytest

# Add parent directories to path for imports
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..', '..')))
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..', '..', 'plugins')))

from airflow.models import DagBag

DAG_FOLDER = os.path.abspath(os.path.join(os.path.dirname(__file__), '..', '..', 'dags'))
DAG_ID = "salesforce_to_postgres_migration"


@pytest.fixture(scope="module")
def dag_bag():
    """Create a DagBag for testing."""
    return DagBag(dag_folder=DAG_FOLDER, include_examples=False)


class TestDAGStructure:
    """Test the DAG loads with the expected tasks and parameters."""

    def test_no_import_errors(self, dag_bag):
        assert dag_bag.import_errors == {}

    def test_dag_has_expected_params(self, dag_bag):
        dag = dag_bag.get_dag(DAG_ID)
        assert dag is not None

        expected_params = [
            "source_conn_id",
            "target_conn_id",
            "target_schema",
            "include_tables",
            "artifact_dir",
            "poll_interval_seconds",
            "poll_timeout_seconds",
            "legacy_time_mapping",
        ]
        for param in expected_params:
            assert param in dag.params, f"Missing expected parameter: {param}"

    def test_default_allow_list(self, dag_bag):
        dag = dag_bag.get_dag(DAG_ID)
        assert dag.params["include_tables"] == ["Account", "Contact", "Opportunity", "RecordType", "User"]

    def test_task_order(self, dag_bag):
        dag = dag_bag.get_dag(DAG_ID)
        task_ids = [task.task_id for task in dag.tasks]
        for task_id in ("validate_params", "create_target_schema", "run_migration",
                        "generate_migration_summary"):
            assert task_id in task_ids

        assert "create_target_schema" in dag.get_task("validate_params").downstream_task_ids
        assert "run_migration" in dag.get_task("create_target_schema").downstream_task_ids
        assert "generate_migration_summary" in dag.get_task("run_migration").downstream_task_ids

    def test_no_automatic_retries(self, dag_bag):
        dag = dag_bag.get_dag(DAG_ID)
        assert all(task.retries == 0 for task in dag.tasks)


class TestIdentifierValidation:
    """Test the identifier check applied to the schema and object names."""

    @pytest.fixture
    def validate(self):
        sys.path.insert(0, DAG_FOLDER)
        from salesforce_to_postgres_migration import validate_sql_identifier
        return validate_sql_identifier

    def test_standard_and_custom_objects(self, validate):
        assert validate("Account") == "Account"
        assert validate("Invoice__c") == "Invoice__c"

    def test_rejects_injection(self, validate):
        with pytest.raises(ValueError):
            validate('Account"; DROP TABLE x; --')

    def test_rejects_empty_and_long_names(self, validate):
        with pytest.raises(ValueError):
            validate("")
        with pytest.raises(ValueError):
            validate("a" * 64)
