"""
Acceptance test fixtures — PostgreSQL testcontainer for end-to-end tests.

Same pattern as the integration fixtures, scoped for acceptance.
"""

from __future__ import annotations

from collections.abc import Iterator

import pytest
from support import postgres_dsn, reset_database
from testcontainers.postgres import PostgresContainer

from dte_signer.adapters.repository import create_schema


@pytest.fixture(scope="session")
def acceptance_pg() -> Iterator[PostgresContainer]:
    """Start a PostgreSQL container for the acceptance test session."""
    with PostgresContainer("postgres:16-alpine") as pg:
        create_schema(postgres_dsn(pg)).value()
        yield pg


@pytest.fixture()
def acceptance_dsn(acceptance_pg: PostgresContainer) -> str:
    """Return a psycopg-compatible DSN of an empty database."""
    return reset_database(postgres_dsn(acceptance_pg))
