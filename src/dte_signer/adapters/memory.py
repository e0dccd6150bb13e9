"""
In-memory adapters for every storage port.

Used by the unit tests and when no database is configured. Each store keeps
its records in a dict guarded by a threading.Lock; records are immutable, so
handing them out without copying is safe.
"""

from __future__ import annotations

import threading
from collections.abc import Iterable

import structlog

from dte_signer.domain.dte import Dte
from dte_signer.domain.models import Customer, Sale, Seller
from dte_signer.domain.ports import DtePage, DteQuery
from dte_signer.railway import Result, ResultFailures

log = structlog.get_logger()


class InMemorySaleStore:
    def __init__(self, sales: Iterable[Sale] = ()) -> None:
        self._sales = {sale.id: sale for sale in sales}
        self._lock = threading.Lock()

    def find_by_id(self, sale_id: str) -> Result[Sale]:
        with self._lock:
            sale = self._sales.get(sale_id)
        return Result.from_optional(sale, f"Sale not found with identifier: {sale_id}")

    def save(self, sale: Sale) -> Result[Sale]:
        with self._lock:
            self._sales[sale.id] = sale
        return Result.success(sale)


class InMemoryCustomerStore:
    def __init__(self, customers: Iterable[Customer] = ()) -> None:
        self._customers = {customer.id: customer for customer in customers}
        self._lock = threading.Lock()

    def find_by_id(self, customer_id: str) -> Result[Customer]:
        with self._lock:
            customer = self._customers.get(customer_id)
        return Result.from_optional(customer, f"Customer not found with identifier: {customer_id}")

    def add(self, customer: Customer) -> None:
        with self._lock:
            self._customers[customer.id] = customer


class InMemorySellerStore:
    def __init__(self, sellers: Iterable[Seller] = ()) -> None:
        self._sellers = {seller.id: seller for seller in sellers}
        self._lock = threading.Lock()

    def find_by_id(self, seller_id: str) -> Result[Seller]:
        with self._lock:
            seller = self._sellers.get(seller_id)
        return Result.from_optional(seller, f"Seller not found with identifier: {seller_id}")

    def add(self, seller: Seller) -> None:
        with self._lock:
            self._sellers[seller.id] = seller


class InMemoryDteRepository:
    """
    DTE store with a lock-guarded sequence counter.

    The counter starts after any DTEs passed in, so next_sequence() equals
    count() + 1 until a generation fails after allocating a number.
    """

    def __init__(self, dtes: Iterable[Dte] = ()) -> None:
        self._dtes = {dte.id: dte for dte in dtes}
        self._sequence = len(self._dtes)
        self._lock = threading.Lock()

    def find_by_id(self, dte_id: str) -> Result[Dte]:
        with self._lock:
            dte = self._dtes.get(dte_id)
        if dte is None:
            return ResultFailures.not_found("DTE", dte_id)
        return Result.success(dte)

    def save(self, dte: Dte) -> Result[Dte]:
        with self._lock:
            self._dtes[dte.id] = dte
        log.debug("memory.dte_saved", dte_id=dte.id, status=dte.status.value)
        return Result.success(dte)

    def count(self) -> Result[int]:
        with self._lock:
            return Result.success(len(self._dtes))

    def next_sequence(self) -> Result[int]:
        with self._lock:
            self._sequence += 1
            return Result.success(self._sequence)

    def find_all(self, query: DteQuery) -> Result[list[Dte]]:
        with self._lock:
            matches = [dte for dte in self._dtes.values() if query.matches(dte)]
        matches.sort(key=lambda dte: (dte.created_at, dte.document_number), reverse=True)
        return Result.success(matches)

    def search(self, query: DteQuery) -> Result[DtePage]:
        return self.find_all(query).map(
            lambda matches: DtePage(
                items=matches[query.offset : query.offset + query.limit],
                total=len(matches),
                page=query.page,
                limit=query.limit,
            )
        )
