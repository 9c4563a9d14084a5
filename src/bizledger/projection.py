"""Local projection of store state.

A :class:`Projection` holds the last confirmed copy of every collection,
keyed by entity id in insertion order. It is updated only with results the
store has acknowledged and can be detached when the view that owns it goes
away, after which late completions are ignored.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Protocol

from . import data_manager, log
from .constants import EntityKind


class SupportsListing(Protocol):
    def list_customers(self) -> List[data_manager.CustomerRow]: ...

    def list_products(self) -> List[data_manager.ProductRow]: ...

    def list_expenses(self) -> List[data_manager.ExpenseRow]: ...

    def list_invoices(self) -> List[data_manager.InvoiceRow]: ...


_ID_ATTRIBUTES: Dict[EntityKind, str] = {
    EntityKind.CUSTOMER: "customer_id",
    EntityKind.PRODUCT: "product_id",
    EntityKind.EXPENSE: "expense_id",
    EntityKind.INVOICE: "invoice_id",
}


def record_id(kind: EntityKind, record: Any) -> str:
    return getattr(record, _ID_ATTRIBUTES[kind])


@dataclass(frozen=True)
class Snapshot:
    """Immutable view of every collection at one point in time."""

    customers: tuple[data_manager.CustomerRow, ...] = ()
    products: tuple[data_manager.ProductRow, ...] = ()
    expenses: tuple[data_manager.ExpenseRow, ...] = ()
    invoices: tuple[data_manager.InvoiceRow, ...] = ()


@dataclass
class Projection:
    """Injectable per-kind record maps updated on confirmed mutations."""

    _records: Dict[EntityKind, Dict[str, Any]] = field(
        default_factory=lambda: {kind: {} for kind in EntityKind}, repr=False
    )
    active: bool = True

    def detach(self) -> None:
        """Stop accepting updates; the owning view is no longer active."""

        self.active = False
        log.debug("Projection detached; further updates will be ignored")

    def _accepting(self, action: str, kind: EntityKind) -> bool:
        if not self.active:
            log.debug("Ignoring %s for %s on detached projection", action, kind.value)
        return self.active

    def upsert(self, kind: EntityKind, record: Any) -> None:
        """Insert or replace ``record``; replacements keep their position."""

        if self._accepting("upsert", kind):
            self._records[kind][record_id(kind, record)] = record

    def remove(self, kind: EntityKind, entity_id: str) -> None:
        if self._accepting("remove", kind):
            self._records[kind].pop(entity_id, None)

    def replace_all(self, kind: EntityKind, records: Iterable[Any]) -> None:
        if self._accepting("replace_all", kind):
            self._records[kind] = {record_id(kind, record): record for record in records}
            log.debug("Projection holds %d %s records", len(self._records[kind]), kind.value)

    def get(self, kind: EntityKind, entity_id: str) -> Optional[Any]:
        return self._records[kind].get(entity_id)

    def values(self, kind: EntityKind) -> List[Any]:
        return list(self._records[kind].values())

    def snapshot(self) -> Snapshot:
        return Snapshot(
            customers=tuple(self._records[EntityKind.CUSTOMER].values()),
            products=tuple(self._records[EntityKind.PRODUCT].values()),
            expenses=tuple(self._records[EntityKind.EXPENSE].values()),
            invoices=tuple(self._records[EntityKind.INVOICE].values()),
        )

    def hydrate(self, store: SupportsListing) -> None:
        """Populate every collection from the store's list endpoints."""

        self.replace_all(EntityKind.CUSTOMER, store.list_customers())
        self.replace_all(EntityKind.PRODUCT, store.list_products())
        self.replace_all(EntityKind.EXPENSE, store.list_expenses())
        self.replace_all(EntityKind.INVOICE, store.list_invoices())
