"""
PostgreSQL adapters — JSONB document storage for DTEs and their collaborators.

Adapter layer — implements SaleStore, CustomerStore, SellerStore and
DteRepository with psycopg (v3), one short-lived connection per call and
parameterized SQL.

Table mapping:
  Sale     → sales      (id, document)
  Customer → customers  (id, document)
  Seller   → sellers    (id, document)
  Dte      → dtes       (id, document_number UNIQUE, status, document_type,
                         created_at, document)

Filterable DTE fields are copied into columns; the full record lives in the
JSONB `document` column (see adapters/codec.py). Document numbers come from
the `dte_number_seq` sequence, so concurrent generators never share one.

No ORM — raw parameterized SQL.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import psycopg
import structlog
from psycopg.types.json import Jsonb

from dte_signer.adapters.codec import (
    customer_from_dict,
    customer_to_dict,
    dte_from_dict,
    dte_to_dict,
    sale_from_dict,
    sale_to_dict,
    seller_from_dict,
    seller_to_dict,
)
from dte_signer.domain.dte import Dte
from dte_signer.domain.models import Customer, Sale, Seller
from dte_signer.domain.ports import DtePage, DteQuery
from dte_signer.railway import ErrorCode, Result, ResultFailures

log = structlog.get_logger()

DDL = """
CREATE TABLE IF NOT EXISTS sales (
    id TEXT PRIMARY KEY,
    document JSONB NOT NULL
);

CREATE TABLE IF NOT EXISTS customers (
    id TEXT PRIMARY KEY,
    document JSONB NOT NULL
);

CREATE TABLE IF NOT EXISTS sellers (
    id TEXT PRIMARY KEY,
    document JSONB NOT NULL
);

CREATE TABLE IF NOT EXISTS dtes (
    id TEXT PRIMARY KEY,
    document_number TEXT NOT NULL UNIQUE,
    status TEXT NOT NULL,
    document_type TEXT NOT NULL,
    created_at TIMESTAMPTZ NOT NULL,
    document JSONB NOT NULL
);

CREATE INDEX IF NOT EXISTS dtes_created_at_idx ON dtes (created_at DESC);

CREATE SEQUENCE IF NOT EXISTS dte_number_seq;
"""

_UPSERT_DOCUMENT = """
INSERT INTO {table} (id, document) VALUES (%s, %s)
ON CONFLICT (id) DO UPDATE SET document = EXCLUDED.document
"""

_UPSERT_DTE = """
INSERT INTO dtes (id, document_number, status, document_type, created_at, document)
VALUES (%s, %s, %s, %s, %s, %s)
ON CONFLICT (id) DO UPDATE SET
    status = EXCLUDED.status,
    document = EXCLUDED.document
"""


def create_schema(dsn: str) -> Result[str]:
    """Create tables and the numbering sequence if they do not exist."""

    def _apply() -> str:
        with psycopg.connect(dsn) as conn, conn.cursor() as cur:
            cur.execute(DDL)
        log.info("repository.schema_ready")
        return dsn

    return Result.from_computation(_apply, ErrorCode.DATABASE_ERROR, "Failed to create database schema")


class _DocumentTable:
    """Shared id → JSONB document access for the collaborator tables."""

    _table: str = ""
    _resource: str = ""

    def __init__(self, dsn: str) -> None:
        self._dsn = dsn

    def _find(self, record_id: str, decode: Callable[[dict[str, Any]], Any]) -> Result[Any]:
        return Result.from_computation(
            lambda: self._select(record_id),
            ErrorCode.DATABASE_ERROR,
            f"Failed to read from {self._table}",
        ).flat_map(
            lambda rows: (
                Result.from_computation(
                    lambda: decode(rows[0]),
                    ErrorCode.DATABASE_ERROR,
                    f"Stored {self._resource} document is malformed",
                )
                if rows
                else ResultFailures.not_found(self._resource, record_id)
            )
        )

    def _select(self, record_id: str) -> list[dict[str, Any]]:
        with psycopg.connect(self._dsn) as conn, conn.cursor() as cur:
            cur.execute(f"SELECT document FROM {self._table} WHERE id = %s", (record_id,))
            return [row[0] for row in cur.fetchall()]

    def _upsert(self, record_id: str, document: dict[str, Any]) -> Result[str]:
        def _write() -> str:
            with psycopg.connect(self._dsn) as conn, conn.transaction(), conn.cursor() as cur:
                cur.execute(_UPSERT_DOCUMENT.format(table=self._table), (record_id, Jsonb(document)))
            return record_id

        return Result.from_computation(_write, ErrorCode.DATABASE_ERROR, f"Failed to write to {self._table}")


class PsycopgSaleStore(_DocumentTable):
    """Implements the SaleStore port."""

    _table = "sales"
    _resource = "Sale"

    def find_by_id(self, sale_id: str) -> Result[Sale]:
        return self._find(sale_id, sale_from_dict)

    def save(self, sale: Sale) -> Result[Sale]:
        return self._upsert(sale.id, sale_to_dict(sale)).map(lambda _: sale)


class PsycopgCustomerStore(_DocumentTable):
    """Implements the CustomerStore port; save() is for seeding."""

    _table = "customers"
    _resource = "Customer"

    def find_by_id(self, customer_id: str) -> Result[Customer]:
        return self._find(customer_id, customer_from_dict)

    def save(self, customer: Customer) -> Result[Customer]:
        return self._upsert(customer.id, customer_to_dict(customer)).map(lambda _: customer)


class PsycopgSellerStore(_DocumentTable):
    """Implements the SellerStore port; save() is for seeding."""

    _table = "sellers"
    _resource = "Seller"

    def find_by_id(self, seller_id: str) -> Result[Seller]:
        return self._find(seller_id, seller_from_dict)

    def save(self, seller: Seller) -> Result[Seller]:
        return self._upsert(seller.id, seller_to_dict(seller)).map(lambda _: seller)


class PsycopgDteRepository:
    """
    Persist DTEs to PostgreSQL.

    Implements the DteRepository port.
    All exceptions are caught at this adapter boundary via Result.from_computation().
    """

    def __init__(self, dsn: str) -> None:
        self._dsn = dsn

    def find_by_id(self, dte_id: str) -> Result[Dte]:
        return Result.from_computation(
            lambda: self._select_documents("WHERE id = %s", (dte_id,)),
            ErrorCode.DATABASE_ERROR,
            "Failed to read DTE",
        ).flat_map(
            lambda rows: (
                Result.success(rows[0]) if rows else ResultFailures.not_found("DTE", dte_id)
            )
        )

    def save(self, dte: Dte) -> Result[Dte]:
        return Result.from_computation(
            lambda: self._upsert(dte),
            ErrorCode.DATABASE_ERROR,
            "Failed to persist DTE to database",
        )

    def _upsert(self, dte: Dte) -> Dte:
        with psycopg.connect(self._dsn) as conn, conn.transaction(), conn.cursor() as cur:
            cur.execute(
                _UPSERT_DTE,
                (
                    dte.id,
                    dte.document_number,
                    dte.status.value,
                    dte.document_type.value,
                    dte.created_at,
                    Jsonb(dte_to_dict(dte)),
                ),
            )
        log.debug("repository.dte_saved", dte_id=dte.id, status=dte.status.value)
        return dte

    def count(self) -> Result[int]:
        return Result.from_computation(
            lambda: self._scalar("SELECT count(*) FROM dtes", ()),
            ErrorCode.DATABASE_ERROR,
            "Failed to count DTEs",
        )

    def next_sequence(self) -> Result[int]:
        return Result.from_computation(
            lambda: self._scalar("SELECT nextval('dte_number_seq')", ()),
            ErrorCode.DATABASE_ERROR,
            "Failed to allocate a DTE number",
        )

    def find_all(self, query: DteQuery) -> Result[list[Dte]]:
        where, params = _filters(query)
        return Result.from_computation(
            lambda: self._select_documents(f"{where} ORDER BY created_at DESC, document_number DESC", params),
            ErrorCode.DATABASE_ERROR,
            "Failed to list DTEs",
        )

    def search(self, query: DteQuery) -> Result[DtePage]:
        where, params = _filters(query)
        return Result.from_computation(
            lambda: DtePage(
                items=self._select_documents(
                    f"{where} ORDER BY created_at DESC, document_number DESC LIMIT %s OFFSET %s",
                    (*params, query.limit, query.offset),
                ),
                total=self._scalar(f"SELECT count(*) FROM dtes {where}", params),
                page=query.page,
                limit=query.limit,
            ),
            ErrorCode.DATABASE_ERROR,
            "Failed to search DTEs",
        )

    def _select_documents(self, clause: str, params: tuple[Any, ...]) -> list[Dte]:
        with psycopg.connect(self._dsn) as conn, conn.cursor() as cur:
            cur.execute(f"SELECT document FROM dtes {clause}", params)
            return [dte_from_dict(row[0]) for row in cur.fetchall()]

    def _scalar(self, sql: str, params: tuple[Any, ...]) -> int:
        with psycopg.connect(self._dsn) as conn, conn.cursor() as cur:
            cur.execute(sql, params)
            row = cur.fetchone()
            return int(row[0]) if row else 0


def _filters(query: DteQuery) -> tuple[str, tuple[Any, ...]]:
    clauses: list[str] = []
    params: list[Any] = []
    if query.status is not None:
        clauses.append("status = %s")
        params.append(query.status.value)
    if query.document_type is not None:
        clauses.append("document_type = %s")
        params.append(query.document_type.value)
    if query.created_from is not None:
        clauses.append("created_at >= %s")
        params.append(query.created_from)
    if query.created_to is not None:
        clauses.append("created_at <= %s")
        params.append(query.created_to)
    where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
    return where, tuple(params)
