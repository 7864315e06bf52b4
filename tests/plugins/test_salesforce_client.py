"""
Tests for the Salesforce REST Client

HTTP is mocked at the requests session level.
"""

import pytest
import requests
from unittest.mock import Mock

from sf_pg_migration.salesforce_client import SalesforceClient, _is_transient


def ok_response(payload=None, headers=None):
    response = Mock()
    response.status_code = 200
    response.json.return_value = payload or {}
    response.headers = headers or {}
    response.raise_for_status.return_value = None
    return response


def error_response(status_code):
    response = Mock()
    response.status_code = status_code
    response.raise_for_status.side_effect = requests.HTTPError(
        f"{status_code} Error", response=response
    )
    return response


@pytest.fixture
def session():
    session = Mock()
    session.headers = {}
    return session


@pytest.fixture
def client(session):
    return SalesforceClient(
        "https://example.my.salesforce.com/",
        "token-123",
        api_version="59.0",
        session=session,
        max_attempts=3,
        retry_backoff_seconds=0,
    )


class TestTransientErrors:
    """Test which failures are retried."""

    def test_connection_errors_are_transient(self):
        assert _is_transient(requests.ConnectionError("reset"))
        assert _is_transient(requests.Timeout("slow"))

    def test_server_errors_are_transient(self):
        assert _is_transient(requests.HTTPError(response=Mock(status_code=503)))

    def test_client_errors_are_not_transient(self):
        assert not _is_transient(requests.HTTPError(response=Mock(status_code=404)))
        assert not _is_transient(ValueError("bad"))


class TestLogin:
    """Test the OAuth username-password flow."""

    def test_login(self, session):
        session.post.return_value = ok_response({
            "instance_url": "https://example.my.salesforce.com",
            "access_token": "token-abc",
        })

        client = SalesforceClient.login(
            "https://test.salesforce.com",
            "user@example.com",
            "secret",
            client_id="cid",
            client_secret="csecret",
            security_token="TOKEN",
            session=session,
        )

        url = session.post.call_args.args[0]
        data = session.post.call_args.kwargs["data"]
        assert url == "https://test.salesforce.com/services/oauth2/token"
        assert data["grant_type"] == "password"
        assert data["password"] == "secretTOKEN"
        assert client.instance_url == "https://example.my.salesforce.com"
        assert session.headers["Authorization"] == "Bearer token-abc"

    def test_login_failure(self, session):
        session.post.return_value = error_response(400)
        with pytest.raises(requests.HTTPError):
            SalesforceClient.login("https://login.salesforce.com", "u", "p", "cid", "cs", session=session)


class TestRequests:
    """Test endpoint URLs and retry behaviour."""

    def test_base_url(self, client):
        assert client.base_url == "https://example.my.salesforce.com/services/data/v59.0"

    def test_describe_global(self, client, session):
        session.get.return_value = ok_response({"sobjects": [{"name": "Account"}]})
        assert client.describe_global() == {"sobjects": [{"name": "Account"}]}
        assert session.get.call_args.args[0] == (
            "https://example.my.salesforce.com/services/data/v59.0/sobjects/"
        )

    def test_describe_sobject(self, client, session):
        session.get.return_value = ok_response({"fields": []})
        client.describe_sobject("Contact")
        assert session.get.call_args.args[0].endswith("/sobjects/Contact/describe/")

    def test_retries_server_errors(self, client, session):
        session.get.side_effect = [
            error_response(503),
            requests.ConnectionError("reset"),
            ok_response({"fields": []}),
        ]
        assert client.describe_sobject("Contact") == {"fields": []}
        assert session.get.call_count == 3

    def test_gives_up_after_max_attempts(self, client, session):
        session.get.return_value = error_response(500)
        with pytest.raises(requests.HTTPError):
            client.describe_global()
        assert session.get.call_count == 3

    def test_client_errors_not_retried(self, client, session):
        session.get.return_value = error_response(404)
        with pytest.raises(requests.HTTPError):
            client.describe_sobject("Nope")
        assert session.get.call_count == 1

    def test_create_query_job_not_retried(self, client, session):
        session.post.return_value = error_response(503)
        with pytest.raises(requests.HTTPError):
            client.create_query_job("SELECT Id FROM Account")
        assert session.post.call_count == 1

    def test_create_query_job_payload(self, client, session):
        session.post.return_value = ok_response({"id": "750xx"})
        assert client.create_query_job("SELECT Id FROM Account") == {"id": "750xx"}
        body = session.post.call_args.kwargs["json"]
        assert body["operation"] == "query"
        assert body["query"] == "SELECT Id FROM Account"
        assert body["contentType"] == "CSV"

    def test_abort_query_job(self, client, session):
        session.patch.return_value = ok_response()
        client.abort_query_job("750xx")
        assert session.patch.call_args.args[0].endswith("/jobs/query/750xx")
        assert session.patch.call_args.kwargs["json"] == {"state": "Aborted"}

    def test_get_query_results(self, client, session):
        response = ok_response(headers={"Sforce-Locator": "null"})
        session.get.return_value = response

        assert client.get_query_results("750xx", locator="abc", max_records=500) is response
        kwargs = session.get.call_args.kwargs
        assert session.get.call_args.args[0].endswith("/jobs/query/750xx/results")
        assert kwargs["params"] == {"locator": "abc", "maxRecords": 500}
        assert kwargs["headers"] == {"Accept": "text/csv"}
        assert kwargs["stream"] is True

    def test_first_results_page_has_no_locator(self, client, session):
        session.get.return_value = ok_response()
        client.get_query_results("750xx")
        assert session.get.call_args.kwargs["params"] == {}
