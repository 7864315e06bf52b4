"""
Connection Helpers

Builds the two sessions the migration needs, either from Airflow connections
or from environment variables:

- Salesforce: an Airflow connection whose host is the login URL, login and
  password are the user's credentials and extras carry ``client_id``,
  ``client_secret`` and optionally ``security_token`` / ``api_version``.
- PostgreSQL: a regular postgres connection, opened in autocommit mode.
"""

from typing import Optional
import logging
import os

import psycopg2
from airflow.hooks.base import BaseHook
from airflow.providers.postgres.hooks.postgres import PostgresHook

from sf_pg_migration.salesforce_client import (
    DEFAULT_API_VERSION,
    DEFAULT_LOGIN_URL,
    SalesforceClient,
)

logger = logging.getLogger(__name__)


def _login_url(host: Optional[str]) -> str:
    if not host:
        return DEFAULT_LOGIN_URL
    if not host.startswith(("http://", "https://")):
        return f"https://{host}"
    return host


def get_salesforce_client(sf_conn_id: str) -> SalesforceClient:
    """
    Log in to Salesforce with the credentials of an Airflow connection.

    Args:
        sf_conn_id: Airflow connection ID for Salesforce

    Returns:
        Authenticated SalesforceClient
    """
    conn = BaseHook.get_connection(sf_conn_id)
    extra = conn.extra_dejson or {}
    return SalesforceClient.login(
        login_url=_login_url(conn.host),
        username=conn.login,
        password=conn.password or '',
        client_id=extra.get('client_id', ''),
        client_secret=extra.get('client_secret', ''),
        security_token=extra.get('security_token', ''),
        api_version=str(extra.get('api_version', DEFAULT_API_VERSION)),
    )


def get_postgres_connection(postgres_conn_id: str):
    """
    Open an autocommit psycopg2 connection from an Airflow connection.

    Args:
        postgres_conn_id: Airflow connection ID for PostgreSQL

    Returns:
        psycopg2 connection
    """
    conn = PostgresHook(postgres_conn_id=postgres_conn_id).get_conn()
    conn.autocommit = True
    logger.info(f"Connected to PostgreSQL ({postgres_conn_id})")
    return conn


def salesforce_client_from_env() -> SalesforceClient:
    """Log in to Salesforce with SF_* environment variables."""
    return SalesforceClient.login(
        login_url=os.environ.get('SF_LOGIN_URL', DEFAULT_LOGIN_URL),
        username=os.environ['SF_USERNAME'],
        password=os.environ['SF_PASSWORD'],
        client_id=os.environ.get('SF_CLIENT_ID', ''),
        client_secret=os.environ.get('SF_CLIENT_SECRET', ''),
        security_token=os.environ.get('SF_SECURITY_TOKEN', ''),
        api_version=os.environ.get('SALESFORCE_API_VERSION', DEFAULT_API_VERSION),
    )


def postgres_connection_from_env():
    """Open an autocommit psycopg2 connection with POSTGRES_* environment variables."""
    conn = psycopg2.connect(
        host=os.environ.get('POSTGRES_HOST', 'localhost'),
        port=int(os.environ.get('POSTGRES_PORT', '5432')),
        dbname=os.environ.get('POSTGRES_DATABASE', 'salesforce'),
        user=os.environ.get('POSTGRES_USERNAME', 'postgres'),
        password=os.environ.get('POSTGRES_PASSWORD', ''),
    )
    conn.autocommit = True
    return conn
