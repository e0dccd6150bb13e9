"""
Integration test fixtures — PostgreSQL testcontainer and schema setup.

Provides a real PostgreSQL instance for each test session via testcontainers.
The schema is created with the production create_schema(); each test gets a
clean database via truncation and a restarted numbering sequence.
"""

from __future__ import annotations

from collections.abc import Iterator

import pytest
from support import postgres_dsn, reset_database
from testcontainers.postgres import PostgresContainer

from dte_signer.adapters.repository import create_schema


@pytest.fixture(scope="session")
def postgres_container() -> Iterator[PostgresContainer]:
    """Start a PostgreSQL container for the entire test session."""
    with PostgresContainer("postgres:16-alpine") as pg:
        create_schema(postgres_dsn(pg)).value()
        yield pg


@pytest.fixture()
def dsn(postgres_container: PostgresContainer) -> str:
    """Return a psycopg-compatible DSN of an empty database."""
    return reset_database(postgres_dsn(postgres_container))
