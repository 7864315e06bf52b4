"""
Salesforce REST Client

Thin wrapper over the Salesforce REST and Bulk API 2.0 endpoints used by the
migration: catalog discovery, object describe, and asynchronous query jobs.

Idempotent reads (describe calls, job status, result pages) are retried with
bounded exponential backoff. Job creation and abort are never retried.
"""

from typing import Any, Dict, Optional
import logging
import os

import requests
import tenacity

logger = logging.getLogger(__name__)


DEFAULT_API_VERSION = os.environ.get("SALESFORCE_API_VERSION", "59.0")
DEFAULT_LOGIN_URL = "https://login.salesforce.com"

# Bulk API 2.0 job states
JOB_COMPLETE = "JobComplete"
JOB_FAILED = "Failed"
JOB_ABORTED = "Aborted"
TERMINAL_JOB_STATES = frozenset({JOB_COMPLETE, JOB_FAILED, JOB_ABORTED})

# Locator value Salesforce returns on the last result page
LAST_PAGE_LOCATOR = "null"


def _is_transient(error: BaseException) -> bool:
    """Network failures and 5xx responses are worth another attempt."""
    if isinstance(error, (requests.ConnectionError, requests.Timeout)):
        return True
    if isinstance(error, requests.HTTPError) and error.response is not None:
        return error.response.status_code >= 500
    return False


class SalesforceClient:
    """
    Session-bound client for one Salesforce org.

    Usage:
        client = SalesforceClient.login(login_url, username, password,
                                        client_id, client_secret)
        client.describe_global()
    """

    def __init__(
        self,
        instance_url: str,
        access_token: str,
        api_version: str = DEFAULT_API_VERSION,
        session: Optional[requests.Session] = None,
        timeout: float = 60.0,
        max_attempts: int = 3,
        retry_backoff_seconds: float = 2.0,
    ):
        """
        Initialize the client.

        Args:
            instance_url: Org instance URL returned by the OAuth token call
            access_token: OAuth bearer token
            api_version: REST API version, e.g. "59.0"
            session: Optional pre-configured requests session
            timeout: Per-request timeout in seconds
            max_attempts: Attempts for retried reads
            retry_backoff_seconds: Base delay of the exponential backoff
        """
        self.instance_url = instance_url.rstrip("/")
        self.api_version = api_version
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({"Authorization": f"Bearer {access_token}"})

        self._retrying = tenacity.Retrying(
            stop=tenacity.stop_after_attempt(max_attempts),
            wait=tenacity.wait_exponential(
                multiplier=retry_backoff_seconds,
                min=retry_backoff_seconds,
                max=retry_backoff_seconds * 8,
            ),
            retry=tenacity.retry_if_exception(_is_transient),
            before_sleep=self._log_retry,
            reraise=True,
        )

    @classmethod
    def login(
        cls,
        login_url: str,
        username: str,
        password: str,
        client_id: str,
        client_secret: str,
        security_token: str = "",
        api_version: str = DEFAULT_API_VERSION,
        session: Optional[requests.Session] = None,
    ) -> "SalesforceClient":
        """
        Authenticate with the OAuth 2.0 username-password flow.

        Returns:
            Client bound to the org's instance URL
        """
        session = session or requests.Session()
        token_url = f"{(login_url or DEFAULT_LOGIN_URL).rstrip('/')}/services/oauth2/token"
        response = session.post(
            token_url,
            data={
                "grant_type": "password",
                "client_id": client_id,
                "client_secret": client_secret,
                "username": username,
                "password": f"{password}{security_token or ''}",
            },
            timeout=60,
        )
        if response.status_code != 200:
            logger.error(f"Salesforce login failed for {username}: HTTP {response.status_code}")
            response.raise_for_status()

        payload = response.json()
        logger.info(f"Connected to Salesforce instance {payload['instance_url']}")
        return cls(
            instance_url=payload["instance_url"],
            access_token=payload["access_token"],
            api_version=api_version,
            session=session,
        )

    @property
    def base_url(self) -> str:
        return f"{self.instance_url}/services/data/v{self.api_version}"

    def _log_retry(self, retry_state: tenacity.RetryCallState) -> None:
        exception = retry_state.outcome.exception() if retry_state.outcome else None
        logger.warning(
            f"Salesforce request attempt {retry_state.attempt_number} failed: {exception}. Retrying..."
        )

    def _get(self, path: str, **kwargs) -> requests.Response:
        """GET with retry on transient failures. Raises on HTTP errors."""
        url = f"{self.base_url}/{path.lstrip('/')}"
        kwargs.setdefault("timeout", self.timeout)

        def attempt() -> requests.Response:
            response = self.session.get(url, **kwargs)
            response.raise_for_status()
            return response

        return self._retrying(attempt)

    def describe_global(self) -> Dict[str, Any]:
        """List every sObject in the org."""
        return self._get("sobjects/").json()

    def describe_sobject(self, object_name: str) -> Dict[str, Any]:
        """Full describe of one sObject, including its ``fields``."""
        return self._get(f"sobjects/{object_name}/describe/").json()

    def create_query_job(self, soql: str) -> Dict[str, Any]:
        """Submit an asynchronous Bulk API 2.0 query job."""
        response = self.session.post(
            f"{self.base_url}/jobs/query",
            json={
                "operation": "query",
                "query": soql,
                "contentType": "CSV",
                "columnDelimiter": "COMMA",
                "lineEnding": "LF",
            },
            timeout=self.timeout,
        )
        response.raise_for_status()
        return response.json()

    def get_query_job(self, job_id: str) -> Dict[str, Any]:
        """Current status of a query job."""
        return self._get(f"jobs/query/{job_id}").json()

    def abort_query_job(self, job_id: str) -> None:
        response = self.session.patch(
            f"{self.base_url}/jobs/query/{job_id}",
            json={"state": JOB_ABORTED},
            timeout=self.timeout,
        )
        response.raise_for_status()

    def get_query_results(
        self,
        job_id: str,
        locator: Optional[str] = None,
        max_records: Optional[int] = None,
    ) -> requests.Response:
        """
        Open one page of CSV results as a streaming response.

        The caller must close the response. The ``Sforce-Locator`` header
        holds the locator of the next page, or "null" on the last page.
        """
        params: Dict[str, Any] = {}
        if locator:
            params["locator"] = locator
        if max_records:
            params["maxRecords"] = max_records
        return self._get(
            f"jobs/query/{job_id}/results",
            params=params,
            headers={"Accept": "text/csv"},
            stream=True,
        )
