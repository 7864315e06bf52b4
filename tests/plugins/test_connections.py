"""
Tests for Connection Helpers

Airflow connections and PostgreSQL drivers are mocked.
"""

import os

import pytest
from unittest.mock import Mock, patch

from sf_pg_migration.connections import (
    _login_url,
    get_postgres_connection,
    get_salesforce_client,
    postgres_connection_from_env,
    salesforce_client_from_env,
)


class TestLoginUrl:
    """Test login URL normalization."""

    def test_default(self):
        assert _login_url(None) == "https://login.salesforce.com"
        assert _login_url("") == "https://login.salesforce.com"

    def test_scheme_added(self):
        assert _login_url("test.salesforce.com") == "https://test.salesforce.com"

    def test_full_url_unchanged(self):
        assert _login_url("https://acme.my.salesforce.com") == "https://acme.my.salesforce.com"


class TestAirflowConnections:
    """Test sessions built from Airflow connections."""

    @pytest.fixture
    def mock_airflow_connection(self):
        conn = Mock()
        conn.host = "test.salesforce.com"
        conn.login = "user@example.com"
        conn.password = "secret"
        conn.extra_dejson = {
            "client_id": "cid",
            "client_secret": "csecret",
            "security_token": "TOKEN",
            "api_version": 60.0,
        }
        return conn

    def test_get_salesforce_client(self, mock_airflow_connection):
        with patch('sf_pg_migration.connections.BaseHook.get_connection') as mock_get_conn, \
                patch('sf_pg_migration.connections.SalesforceClient.login') as mock_login:
            mock_get_conn.return_value = mock_airflow_connection

            client = get_salesforce_client("salesforce_source")

        mock_get_conn.assert_called_once_with("salesforce_source")
        assert client is mock_login.return_value
        mock_login.assert_called_once_with(
            login_url="https://test.salesforce.com",
            username="user@example.com",
            password="secret",
            client_id="cid",
            client_secret="csecret",
            security_token="TOKEN",
            api_version="60.0",
        )

    def test_get_postgres_connection_is_autocommit(self):
        with patch('sf_pg_migration.connections.PostgresHook') as mock_hook:
            conn = get_postgres_connection("postgres_target")

        mock_hook.assert_called_once_with(postgres_conn_id="postgres_target")
        assert conn is mock_hook.return_value.get_conn.return_value
        assert conn.autocommit is True


class TestEnvironmentConnections:
    """Test sessions built from environment variables."""

    def test_salesforce_client_from_env(self):
        env = {
            "SF_USERNAME": "user@example.com",
            "SF_PASSWORD": "secret",
            "SF_CLIENT_ID": "cid",
            "SF_CLIENT_SECRET": "csecret",
            "SF_LOGIN_URL": "https://test.salesforce.com",
        }
        with patch.dict(os.environ, env), \
                patch('sf_pg_migration.connections.SalesforceClient.login') as mock_login:
            salesforce_client_from_env()

        kwargs = mock_login.call_args.kwargs
        assert kwargs["login_url"] == "https://test.salesforce.com"
        assert kwargs["username"] == "user@example.com"
        assert kwargs["client_id"] == "cid"

    def test_salesforce_client_requires_credentials(self):
        with patch.dict(os.environ, {}, clear=True):
            with pytest.raises(KeyError):
                salesforce_client_from_env()

    def test_postgres_connection_from_env(self):
        env = {
            "POSTGRES_HOST": "db",
            "POSTGRES_PORT": "5433",
            "POSTGRES_DATABASE": "crm",
            "POSTGRES_USERNAME": "loader",
            "POSTGRES_PASSWORD": "pw",
        }
        with patch.dict(os.environ, env), \
                patch('sf_pg_migration.connections.psycopg2.connect') as mock_connect:
            conn = postgres_connection_from_env()

        mock_connect.assert_called_once_with(host="db", port=5433, dbname="crm", user="loader", password="pw")
        assert conn.autocommit is True
