"""
Idempotent upsert store

Persists canonical rows with insert-or-update-in-place semantics keyed on
(org_id, natural key). Writes go through the dialect's
INSERT ... ON CONFLICT DO UPDATE so each row is atomic at the database,
which is what makes concurrent units and retried backfills safe without
explicit locking.
"""
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from itertools import groupby
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set

from sqlalchemy import tuple_
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from storesync.exceptions import ConflictError, NotFoundError, ValidationError
from storesync.models import (
    AdPerformance,
    DailyAnalytics,
    InventorySnapshot,
    Product,
    ShopifyCustomer,
    ShopifyOrder,
)
from storesync.services.rows import (
    AdPerformanceRow,
    CustomerRow,
    DailyAnalyticsRow,
    InventorySnapshotRow,
    OrderRow,
    ProductRow,
)
from storesync.utils.helpers import chunk_list
from storesync.utils.logger import log

MODEL_FOR_ROW = {
    AdPerformanceRow: AdPerformance,
    InventorySnapshotRow: InventorySnapshot,
    DailyAnalyticsRow: DailyAnalytics,
    OrderRow: ShopifyOrder,
    CustomerRow: ShopifyCustomer,
    ProductRow: Product,
}

# Fields a product PUT may change
PRODUCT_EDITABLE_FIELDS = tuple(f for f in ProductRow.field_names()) + ("active",)

# Keeps every multi-row statement under SQLite's bound-parameter limit
MAX_PARAMS_PER_STATEMENT = 900


@dataclass
class UpsertResult:
    """Per-call write outcome."""
    inserted: int = 0
    updated: int = 0
    skipped: int = 0

    @property
    def written(self) -> int:
        return self.inserted + self.updated

    def merge(self, other: "UpsertResult") -> "UpsertResult":
        self.inserted += other.inserted
        self.updated += other.updated
        self.skipped += other.skipped
        return self

    def to_dict(self) -> dict:
        return {
            "written": self.written,
            "inserted": self.inserted,
            "updated": self.updated,
            "skipped": self.skipped,
        }


def _same_value(current: Any, new: Any) -> bool:
    if current is None or new is None:
        return current is None and new is None
    if isinstance(current, Decimal) or isinstance(new, Decimal):
        try:
            return round(float(current), 6) == round(float(new), 6)
        except (TypeError, ValueError):
            return False
    if isinstance(current, float) or isinstance(new, float):
        try:
            return round(float(current), 6) == round(float(new), 6)
        except (TypeError, ValueError):
            return False
    return current == new


def assign_repeat_flags(orders: Iterable[Any]) -> int:
    """
    Set is_repeat_customer on tenant orders; returns how many flags changed.

    An order is a repeat only when an order with the same email exists at a
    strictly earlier created_at, so the flag depends on order history, never
    on load order. Orders sharing a timestamp see the same history. Orders
    without an email or timestamp are never repeats.
    """
    orders = list(orders)
    dated = sorted(
        (o for o in orders if o.email and o.created_at is not None),
        key=lambda o: o.created_at,
    )
    undated = [o for o in orders if not (o.email and o.created_at is not None)]

    changed = 0
    seen: Set[str] = set()
    for _, group in groupby(dated, key=lambda o: o.created_at):
        group = list(group)
        for order in group:
            flag = order.email in seen
            if order.is_repeat_customer is None or bool(order.is_repeat_customer) != flag:
                order.is_repeat_customer = flag
                changed += 1
        seen.update(o.email for o in group)
    for order in undated:
        if order.is_repeat_customer is not False:
            order.is_repeat_customer = False
            changed += 1
    return changed


class UpsertStore:
    """Tenant-scoped writer for canonical rows."""

    def __init__(self, db: Session):
        self.db = db

    # ── Generic path ───────────────────────────────────

    def upsert(
        self,
        org_id: str,
        rows: Sequence[Any],
        update_fields: Optional[Sequence[str]] = None,
        insert_defaults: Optional[Dict[str, Any]] = None,
        commit: bool = True,
    ) -> UpsertResult:
        """
        Insert rows or overwrite the mutable columns of existing ones.

        `update_fields` limits both what is written on insert (plus
        `insert_defaults`) and what is overwritten on conflict; by default
        every non-key field is written. Rows identical to what is stored are
        counted as skipped and leave updated_at untouched. The batch must
        already be deduplicated.
        """
        result = UpsertResult()
        if not rows:
            return result
        if not org_id:
            raise ValidationError("org_id is required")

        row_type = type(rows[0])
        model = MODEL_FOR_ROW[row_type]
        key_fields = row_type.NATURAL_KEY
        fields = tuple(update_fields) if update_fields is not None else row_type.field_names()
        mutable = [f for f in fields if f not in key_fields]
        insert_defaults = insert_defaults or {}

        writable = []
        for row in rows:
            if any(value is None for value in row.natural_key()):
                result.skipped += 1
                continue
            writable.append(row)

        columns_per_row = len(key_fields) + len(mutable) + len(insert_defaults) + 3
        chunk_size = max(1, MAX_PARAMS_PER_STATEMENT // columns_per_row)

        try:
            for chunk in chunk_list(writable, chunk_size):
                existing = self._existing_values(model, org_id, key_fields, mutable, chunk)
                records = []
                for row in chunk:
                    record = row.to_record()
                    current = existing.get(row.natural_key())
                    if current is None:
                        result.inserted += 1
                    elif all(_same_value(current[f], record[f]) for f in mutable):
                        result.skipped += 1
                        continue
                    else:
                        result.updated += 1
                    values = {f: record[f] for f in key_fields}
                    values.update({f: record[f] for f in mutable})
                    for name, default in insert_defaults.items():
                        values.setdefault(name, default)
                    records.append(values)
                if records:
                    self._execute_upsert(model, org_id, records, key_fields, mutable)
            if commit:
                self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            log.error(f"Natural-key violation writing {model.__tablename__}: {e.orig}")
            raise ConflictError(f"Natural-key violation in {model.__tablename__}", details=str(e.orig))
        except Exception:
            self.db.rollback()
            raise

        log.debug(f"Upserted {model.__tablename__} for org {org_id}: {result.to_dict()}")
        return result

    def _existing_values(self, model, org_id: str, key_fields: Sequence[str], mutable: Sequence[str], rows: Sequence[Any]) -> Dict[tuple, Dict[str, Any]]:
        keys = [row.natural_key() for row in rows]
        key_columns = [getattr(model, f) for f in key_fields]
        query = self.db.query(*key_columns, *[getattr(model, f) for f in mutable]).filter(model.org_id == org_id)
        if len(key_columns) == 1:
            query = query.filter(key_columns[0].in_([k[0] for k in keys]))
        else:
            query = query.filter(tuple_(*key_columns).in_(keys))

        found = {}
        width = len(key_fields)
        for record in query.all():
            values = tuple(record)
            found[values[:width]] = dict(zip(mutable, values[width:]))
        return found

    def _execute_upsert(self, model, org_id: str, records: List[Dict[str, Any]], key_fields: Sequence[str], mutable: Sequence[str]):
        insert = pg_insert if self.db.get_bind().dialect.name == "postgresql" else sqlite_insert
        now = datetime.utcnow()
        # Orders and customers carry their own created_at from the storefront
        stamp_created = "created_at" in model.__table__.c and "created_at" not in records[0]
        values = []
        for record in records:
            value = {"org_id": org_id, **record, "updated_at": now}
            if stamp_created:
                value["created_at"] = now
            values.append(value)
        stmt = insert(model.__table__).values(values)
        update_set = {name: stmt.excluded[name] for name in mutable}
        update_set["updated_at"] = stmt.excluded.updated_at
        stmt = stmt.on_conflict_do_update(index_elements=["org_id", *key_fields], set_=update_set)
        self.db.execute(stmt)

    # ── Orders ─────────────────────────────────────────

    def upsert_orders(self, org_id: str, rows: Sequence[OrderRow]) -> UpsertResult:
        """Upsert orders, then re-derive is_repeat_customer for every email touched."""
        result = self.upsert(org_id, rows, commit=False)
        emails = {row.email for row in rows if row.email}
        self.refresh_repeat_flags(org_id, emails, commit=False)
        self.db.commit()
        return result

    def refresh_repeat_flags(self, org_id: str, emails: Iterable[str], commit: bool = True) -> int:
        """Recompute the repeat flag across the full history of each given email."""
        changed = 0
        for chunk in chunk_list(sorted(set(e for e in emails if e)), 500):
            orders = self.db.query(ShopifyOrder).filter(
                ShopifyOrder.org_id == org_id,
                ShopifyOrder.email.in_(chunk)
            ).all()
            changed += assign_repeat_flags(orders)
        if commit:
            self.db.commit()
        return changed

    def recalculate_repeat_customers(self, org_id: str) -> Dict[str, int]:
        """
        Rebuild is_repeat_customer for every order of the tenant, oldest first.

        This is the authoritative pass; run it after bulk backfills that load
        historical orders out of chronological order.
        """
        orders = self.db.query(ShopifyOrder).filter(ShopifyOrder.org_id == org_id).all()
        changed = assign_repeat_flags(orders)
        self.db.commit()

        evaluated = [o for o in orders if o.email and o.created_at is not None]
        repeat = sum(1 for o in evaluated if o.is_repeat_customer)
        log.info(
            f"Recalculated repeat status for org {org_id}: {len(orders)} orders, "
            f"{repeat} repeat, {changed} changed"
        )
        return {
            "totalOrders": len(orders),
            "updated": len(evaluated),
            "changed": changed,
            "repeatCustomers": repeat,
            "newCustomers": len(evaluated) - repeat,
        }

    # ── Customers ──────────────────────────────────────

    def upsert_customers(self, org_id: str, rows: Sequence[CustomerRow]) -> UpsertResult:
        """
        Upsert customers keyed by email (else storefront id).

        A row without last_order_at keeps the stored value; webhook payloads
        do not carry it.
        """
        with_last_order = [r for r in rows if r.last_order_at is not None]
        without_last_order = [r for r in rows if r.last_order_at is None]
        result = self.upsert(org_id, with_last_order, commit=False)
        fields = [f for f in CustomerRow.field_names() if f != "last_order_at"]
        result.merge(self.upsert(org_id, without_last_order, update_fields=fields, commit=False))
        self.db.commit()
        return result

    # ── Products ───────────────────────────────────────

    def upsert_products(self, org_id: str, rows: Sequence[ProductRow], fields: Sequence[str]) -> UpsertResult:
        """
        Upsert catalog rows writing only `fields`.

        Columns outside `fields` keep their stored value on update and take
        the column default on insert. Products arriving here are active.
        """
        unknown = set(fields) - set(PRODUCT_EDITABLE_FIELDS)
        if unknown:
            raise ValidationError(f"Unknown product fields: {', '.join(sorted(unknown))}")
        result = self.upsert(
            org_id, rows,
            update_fields=[f for f in fields if f != "active"],
            insert_defaults={"active": True},
            commit=False,
        )
        for chunk in chunk_list([r.sku for r in rows], 500):
            self.db.query(Product).filter(
                Product.org_id == org_id,
                Product.sku.in_(chunk),
                Product.active.is_(False)
            ).update({"active": True, "updated_at": datetime.utcnow()}, synchronize_session=False)
        self.db.commit()
        return result

    def update_product(self, org_id: str, product_id: int, changes: Dict[str, Any]) -> Product:
        """Field-level partial update by id; only editable fields present in `changes` are written."""
        product = self.db.query(Product).filter(
            Product.id == product_id,
            Product.org_id == org_id
        ).first()
        if not product:
            raise NotFoundError("Product not found")

        for name in PRODUCT_EDITABLE_FIELDS:
            if name in changes:
                setattr(product, name, changes[name])
        product.updated_at = datetime.utcnow()
        try:
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            raise ConflictError("Another product already uses this SKU", details=str(e.orig))
        self.db.refresh(product)
        return product

    def deactivate_missing_products(self, org_id: str, present_skus: Iterable[str]) -> int:
        """Mark active products whose SKU is absent from a full catalog upload as inactive."""
        keep = set(present_skus)
        stale = self.db.query(Product).filter(
            Product.org_id == org_id,
            Product.active.is_(True)
        ).all()
        count = 0
        now = datetime.utcnow()
        for product in stale:
            if product.sku not in keep:
                product.active = False
                product.updated_at = now
                count += 1
        self.db.commit()
        if count:
            log.info(f"Deactivated {count} products missing from catalog upload for org {org_id}")
        return count
