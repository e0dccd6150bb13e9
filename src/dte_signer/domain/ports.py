"""
Ports — Protocol-based interfaces for the collaborators the DTE core talks to.

    Domain ← Ports (protocols) ← Adapters (in-memory, PostgreSQL, httpx, fpdf2)

Each port is a Protocol, so adapters satisfy the contract structurally.
Every method returns Result; adapters catch their own exceptions.

Storage I/O and mail delivery are the only places an operation waits on
something external.
"""

from __future__ import annotations

import math
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from dte_signer.domain.models import (
    Customer,
    DocumentType,
    DteStatus,
    MailMessage,
    Sale,
    Seller,
    SignatureBundle,
)
from dte_signer.railway import Result

if TYPE_CHECKING:
    from dte_signer.domain.dte import Dte


@dataclass(frozen=True, slots=True)
class DteQuery:
    """Filters for listing DTEs. Pages are 1-based; results are newest first."""

    status: DteStatus | None = None
    document_type: DocumentType | None = None
    created_from: datetime | None = None
    created_to: datetime | None = None
    page: int = 1
    limit: int = 10

    def matches(self, dte: Dte) -> bool:
        if self.status is not None and dte.status is not self.status:
            return False
        if self.document_type is not None and dte.document_type is not self.document_type:
            return False
        if self.created_from is not None and dte.created_at < self.created_from:
            return False
        if self.created_to is not None and dte.created_at > self.created_to:
            return False
        return True

    @property
    def offset(self) -> int:
        return (max(self.page, 1) - 1) * self.limit


@dataclass(frozen=True, slots=True)
class DtePage:
    items: list[Dte] = field(default_factory=list)
    total: int = 0
    page: int = 1
    limit: int = 10

    @property
    def pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0


@runtime_checkable
class Signer(Protocol):
    """Port: produce a signature bundle for a DTE's signable fields."""

    def sign(self, fields: Mapping[str, Any], issuer_tax_id: str) -> Result[SignatureBundle]: ...


@runtime_checkable
class SaleStore(Protocol):
    """Port: the sales collaborator. The core reads sales and flips their invoicing fields."""

    def find_by_id(self, sale_id: str) -> Result[Sale]: ...

    def save(self, sale: Sale) -> Result[Sale]: ...


@runtime_checkable
class CustomerStore(Protocol):
    """Port: read-only customer lookup."""

    def find_by_id(self, customer_id: str) -> Result[Customer]: ...


@runtime_checkable
class SellerStore(Protocol):
    """Port: read-only seller (issuing user) lookup."""

    def find_by_id(self, seller_id: str) -> Result[Seller]: ...


@runtime_checkable
class DteRepository(Protocol):
    """
    Port: DTE persistence. DTEs are upserted by id and never deleted.

    next_sequence() allocates the numeric part of the next document number
    atomically; with no gaps it equals count() + 1.
    """

    def find_by_id(self, dte_id: str) -> Result[Dte]: ...

    def save(self, dte: Dte) -> Result[Dte]: ...

    def count(self) -> Result[int]: ...

    def next_sequence(self) -> Result[int]: ...

    def search(self, query: DteQuery) -> Result[DtePage]: ...

    def find_all(self, query: DteQuery) -> Result[list[Dte]]:
        """Every match of the query's filters, ignoring pagination."""
        ...


@runtime_checkable
class MailTransport(Protocol):
    """
    Port: hand a message to the mail relay.

    Returns the delivery mode ("relay", "simulated") on success.
    """

    def deliver(self, message: MailMessage) -> Result[str]: ...


@runtime_checkable
class PdfRenderer(Protocol):
    """Port: printable representation of a DTE."""

    def render(self, dte: Dte) -> Result[bytes]: ...
