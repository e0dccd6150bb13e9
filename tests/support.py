"""
Test doubles and reference records shared across the unit, integration and
acceptance suites.
"""

from __future__ import annotations

import itertools
import random
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from typing import Any
from unittest.mock import MagicMock

import psycopg

from dte_signer.adapters.memory import (
    InMemoryCustomerStore,
    InMemoryDteRepository,
    InMemorySaleStore,
    InMemorySellerStore,
)
from dte_signer.domain.models import Address, Customer, Sale, Seller
from dte_signer.domain.ports import (
    CustomerStore,
    DteRepository,
    MailTransport,
    PdfRenderer,
    SaleStore,
    SellerStore,
)
from dte_signer.lifecycle import DteLifecycle
from dte_signer.railway import Result
from dte_signer.signing.engine import SignatureEngine
from dte_signer.signing.registry import CertificateRegistry

NOW = datetime(2026, 3, 15, 10, 30, 0, tzinfo=UTC)

SALE_ID = "sale-0001"
CUSTOMER_ID = "customer-0001"
SELLER_ID = "seller-0001"
CUSTOMER_TAX_ID = "1234-567890-123-4"
SELLER_TAX_ID = "12345678-9"
CUSTOMER_EMAIL = "cliente@example.com"

# Outcome rolls: < 0.8 accepted, < 0.9 observed, otherwise rejected
ACCEPT = 0.10
OBSERVE = 0.85
REJECT = 0.95

TRUNCATE_ALL = """
TRUNCATE sales, customers, sellers, dtes;
ALTER SEQUENCE dte_number_seq RESTART WITH 1;
"""


class FakeClock:
    """Callable clock frozen at a given instant until advanced."""

    def __init__(self, now: datetime = NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now = self.now + delta


class ScriptedRandom:
    """RandomSource whose outcome rolls are scripted; bytes come from a seeded Random."""

    def __init__(self, rolls: Iterable[float] = (ACCEPT,), seed: int = 7) -> None:
        self.script(rolls)
        self._bytes = random.Random(seed)

    def script(self, rolls: Iterable[float]) -> None:
        self._rolls = itertools.cycle(tuple(rolls))

    def random(self) -> float:
        return next(self._rolls)

    def randbytes(self, n: int) -> bytes:
        return self._bytes.randbytes(n)


def make_sale(sale_id: str = SALE_ID, **overrides: object) -> Sale:
    fields: dict[str, object] = {
        "id": sale_id,
        "number": f"V-{sale_id}",
        "customer_id": CUSTOMER_ID,
        "seller_id": SELLER_ID,
        "subtotal": Decimal("200.00"),
        "tax": Decimal("26.00"),
        "total": Decimal("226.00"),
    }
    fields.update(overrides)
    return Sale(**fields)  # type: ignore[arg-type]


def make_customer(**overrides: object) -> Customer:
    fields: dict[str, object] = {
        "id": CUSTOMER_ID,
        "name": "Distribuidora La Palma S.A. de C.V.",
        "tax_id": CUSTOMER_TAX_ID,
        "email": CUSTOMER_EMAIL,
        "address": Address(street="Calle Arce 1020", city="San Salvador", department="San Salvador"),
    }
    fields.update(overrides)
    return Customer(**fields)  # type: ignore[arg-type]


def make_seller(**overrides: object) -> Seller:
    fields: dict[str, object] = {
        "id": SELLER_ID,
        "name": "Ana Martínez",
        "business_name": "Comercializadora Ejemplo S.A. de C.V.",
        "tax_id": SELLER_TAX_ID,
        "address": Address(street="Boulevard Los Héroes 45", city="San Salvador"),
    }
    fields.update(overrides)
    return Seller(**fields)  # type: ignore[arg-type]


@dataclass
class World:
    """A wired lifecycle plus every collaborator, exposed for assertions."""

    lifecycle: DteLifecycle
    sales: SaleStore
    customers: CustomerStore
    sellers: SellerStore
    dtes: DteRepository
    registry: CertificateRegistry
    engine: SignatureEngine
    clock: FakeClock
    rng: ScriptedRandom
    mail: Any
    pdf: Any


def build_world(
    sales: SaleStore | None = None,
    customers: CustomerStore | None = None,
    sellers: SellerStore | None = None,
    dtes: DteRepository | None = None,
    clock: FakeClock | None = None,
    mail: MailTransport | None = None,
    pdf: PdfRenderer | None = None,
) -> World:
    """
    Wire a lifecycle around the given stores (in-memory by default) with a
    scripted rng (ACCEPTED). Mail and PDF ports are mocks unless real
    adapters are passed in.
    """
    clock = clock or FakeClock()
    sales = sales if sales is not None else InMemorySaleStore([make_sale()])
    customers = customers if customers is not None else InMemoryCustomerStore([make_customer()])
    sellers = sellers if sellers is not None else InMemorySellerStore([make_seller()])
    dtes = dtes if dtes is not None else InMemoryDteRepository()

    registry = CertificateRegistry(clock=clock)
    rng = ScriptedRandom()
    engine = SignatureEngine(registry, rng=rng, clock=clock)

    if mail is None:
        mail = MagicMock()
        mail.deliver.return_value = Result.success("simulated")
    if pdf is None:
        pdf = MagicMock()
        pdf.render.return_value = Result.success(b"%PDF-1.4 test")

    lifecycle = DteLifecycle(
        sales=sales,
        customers=customers,
        sellers=sellers,
        dtes=dtes,
        engine=engine,
        registry=registry,
        mail=mail,
        pdf=pdf,
        sender="facturacion@empresa.com",
        clock=clock,
    )
    return World(lifecycle, sales, customers, sellers, dtes, registry, engine, clock, rng, mail, pdf)


def postgres_dsn(container: object) -> str:
    """psycopg-compatible DSN of a testcontainers PostgresContainer."""
    return container.get_connection_url().replace("postgresql+psycopg2", "postgresql")  # type: ignore[attr-defined]


def reset_database(dsn: str) -> str:
    """Empty every table and restart document numbering at 1."""
    with psycopg.connect(dsn) as conn:
        conn.execute(TRUNCATE_ALL)
        conn.commit()
    return dsn
