"""
Application entry point — wires dependencies and starts the HTTP server.

Composition root: creates concrete adapters and injects them into the
DTE lifecycle. This is the ONLY place where concrete classes are
instantiated; everything else depends on Protocol interfaces.

Responsibilities:
  1. Configure structlog
  2. Load and validate configuration from environment
  3. Create storage (PostgreSQL or in-memory), mail and PDF adapters
  4. Create the certificate registry and signature engine
  5. Serve the FastAPI app with uvicorn
"""

from __future__ import annotations

import logging
import random
import sys
from datetime import timedelta

import structlog

from dte_signer import __version__
from dte_signer.adapters.mail import HttpMailRelay, LoggingMailTransport
from dte_signer.adapters.memory import (
    InMemoryCustomerStore,
    InMemoryDteRepository,
    InMemorySaleStore,
    InMemorySellerStore,
)
from dte_signer.adapters.pdf import FpdfRenderer
from dte_signer.adapters.repository import (
    PsycopgCustomerStore,
    PsycopgDteRepository,
    PsycopgSaleStore,
    PsycopgSellerStore,
    create_schema,
)
from dte_signer.config import AppSettings
from dte_signer.domain.ports import CustomerStore, DteRepository, MailTransport, SaleStore, SellerStore
from dte_signer.lifecycle import DteLifecycle
from dte_signer.signing.engine import SignatureEngine
from dte_signer.signing.registry import DEFAULT_CERTIFICATES, CertificateRegistry


def configure_structlog(log_level: str = "INFO") -> None:
    """Configure structlog for human-readable console output at the given level."""
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, log_level.upper(), logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


type _Stores = tuple[SaleStore, CustomerStore, SellerStore, DteRepository]


def _create_stores(settings: AppSettings) -> _Stores:
    """PostgreSQL stores when a database is configured, in-memory otherwise."""
    if settings.database is None:
        return InMemorySaleStore(), InMemoryCustomerStore(), InMemorySellerStore(), InMemoryDteRepository()

    dsn = settings.database.get_dsn()
    if settings.database.create_schema:
        create_schema(dsn).value()
    return PsycopgSaleStore(dsn), PsycopgCustomerStore(dsn), PsycopgSellerStore(dsn), PsycopgDteRepository(dsn)


def _create_mail(settings: AppSettings) -> MailTransport:
    if settings.mail.relay_url:
        return HttpMailRelay(settings.mail.relay_url, timeout=settings.mail.timeout_seconds)
    return LoggingMailTransport()


def build_lifecycle(settings: AppSettings) -> DteLifecycle:
    """Instantiate every adapter from settings and wire the lifecycle."""
    sales, customers, sellers, dtes = _create_stores(settings)
    signing = settings.signing

    registry = CertificateRegistry(DEFAULT_CERTIFICATES, default_tax_id=signing.default_issuer_tax_id)
    engine = SignatureEngine(
        registry,
        rng=random.Random(signing.random_seed) if signing.random_seed is not None else None,
        max_signature_age=timedelta(hours=signing.max_signature_age_hours),
        enforce_revocation=signing.enforce_revocation,
    )
    return DteLifecycle(
        sales=sales,
        customers=customers,
        sellers=sellers,
        dtes=dtes,
        engine=engine,
        registry=registry,
        mail=_create_mail(settings),
        pdf=FpdfRenderer(),
        sender=settings.mail.sender,
        default_issuer_tax_id=signing.default_issuer_tax_id,
    )


def main() -> None:
    """Validate configuration, then serve the ASGI app."""
    try:
        settings = AppSettings()
    except Exception as e:
        print(f"FATAL: Configuration error — {e}", file=sys.stderr)  # noqa: T201
        sys.exit(1)

    configure_structlog(settings.log_level)
    log = structlog.get_logger()
    log.info(
        "app.starting",
        version=__version__,
        environment=settings.environment.value,
        log_level=settings.log_level,
        storage="postgresql" if settings.database else "memory",
        mail="relay" if settings.mail.relay_url else "simulated",
    )

    import uvicorn

    uvicorn.run("dte_signer.asgi:app", host="0.0.0.0", port=8000, log_level=settings.log_level.lower())


if __name__ == "__main__":
    main()
