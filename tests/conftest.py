"""
Shared test fixtures for the dte-signer test suite.

Helpers and test doubles live in tests/support.py; this module only exposes
them as fixtures.
"""

from __future__ import annotations

import pytest
from support import FakeClock, World, build_world, make_customer, make_sale, make_seller

from dte_signer.domain.models import Customer, Sale, Seller


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def sale() -> Sale:
    return make_sale()


@pytest.fixture()
def customer() -> Customer:
    return make_customer()


@pytest.fixture()
def seller() -> Seller:
    return make_seller()


@pytest.fixture()
def world() -> World:
    """In-memory lifecycle over the reference sale, customer and seller; signs ACCEPTED."""
    return build_world()
