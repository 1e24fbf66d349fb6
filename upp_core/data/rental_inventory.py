# =============================================================================
# upp_core/data/rental_inventory.py
# Rental inventory data API on top of the offline layer
# =============================================================================
"""
RentalInventoryService - CRUD for the `rental_inventory` table.

Reads go through the cache-aside fetcher and then have pending queued
operations replayed over them, so offline edits show up immediately. Writes
go to Supabase when online, otherwise into the sync queue, and the cached rows
are updated optimistically either way.
"""

from __future__ import annotations
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from upp_core.errors import PayloadValidationError
from upp_core.offline.local_store import OperationType
from upp_core.offline.service import OfflineService
from upp_core.services import BaseService, ServiceResult

TABLE_NAME = "rental_inventory"
STORAGE_KEY = "offline_rental_inventory"

ALLOWED_CATEGORIES = ("Chairs", "Canopies", "Tables", "Mattresses")
DEFAULT_CATEGORY = "Tables"
MAX_NAME_LENGTH = 120
COUNT_FIELDS = ("total", "working", "faulty", "inactive")


def _now() -> str:
    return datetime.now().isoformat()


@dataclass
class RentalItem:
    """A row of the rental_inventory table."""
    id: str
    category: str
    item_name: str
    total: int = 0
    working: int = 0
    faulty: int = 0
    inactive: int = 0
    created_at: str = field(default_factory=_now)
    updated_at: str = field(default_factory=_now)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> RentalItem:
        return cls(
            id=str(raw["id"]),
            category=raw.get("category") or DEFAULT_CATEGORY,
            item_name=raw.get("item_name") or "Pending Item",
            total=int(raw.get("total") or 0),
            working=int(raw.get("working") or 0),
            faulty=int(raw.get("faulty") or 0),
            inactive=int(raw.get("inactive") or 0),
            created_at=raw.get("created_at") or _now(),
            updated_at=raw.get("updated_at") or _now(),
        )


# =============================================================================
# SANITIZING
# =============================================================================

def sanitize_category(value: Optional[str]) -> str:
    """Map to one of ALLOWED_CATEGORIES (case-insensitive); unknown -> Tables."""
    if not value:
        return DEFAULT_CATEGORY
    normalized = value.strip().lower()
    for category in ALLOWED_CATEGORIES:
        if category.lower() == normalized:
            return category
    return DEFAULT_CATEGORY


def sanitize_text(value: str, max_length: int = MAX_NAME_LENGTH) -> str:
    return " ".join(value.split())[:max_length]


def parse_count(name: str, value: Any) -> int:
    """Blank -> 0; numeric strings accepted; negatives and fractions rejected."""
    if value is None or value == "":
        return 0
    try:
        number = float(value)
    except (TypeError, ValueError) as e:
        raise PayloadValidationError(
            "Value must be a number", table=TABLE_NAME, field=name, actual=repr(value)
        ) from e
    if not number.is_integer():
        raise PayloadValidationError(
            "Value must be a number", table=TABLE_NAME, field=name, actual=repr(value)
        )
    if number < 0:
        raise PayloadValidationError(
            "Value must be zero or greater", table=TABLE_NAME, field=name, actual=repr(value)
        )
    return int(number)


def normalize_counts(total: int, working: int, faulty: int, inactive: int) -> Dict[str, int]:
    """Clamp to >= 0 and raise total to at least working + faulty + inactive."""
    working, faulty, inactive = max(0, working), max(0, faulty), max(0, inactive)
    return {
        "total": max(working + faulty + inactive, total),
        "working": working,
        "faulty": faulty,
        "inactive": inactive,
    }


def _check_total(counts: Dict[str, int]) -> None:
    if counts["working"] + counts["faulty"] + counts["inactive"] > counts["total"]:
        raise PayloadValidationError(
            "Total must be greater than or equal to working + faulty + inactive counts",
            table=TABLE_NAME,
            field="total",
        )


def sort_records(records: List[RentalItem]) -> List[RentalItem]:
    return sorted(records, key=lambda r: (r.category, r.item_name))


def upsert_record(records: List[RentalItem], record: RentalItem) -> List[RentalItem]:
    merged = {r.id: r for r in records}
    if record.id in merged:
        current = merged[record.id].to_dict()
        current.update({k: v for k, v in record.to_dict().items() if v is not None})
        merged[record.id] = RentalItem.from_dict(current)
    else:
        merged[record.id] = record
    return sort_records(list(merged.values()))


def remove_record(records: List[RentalItem], item_id: str) -> List[RentalItem]:
    return [r for r in records if r.id != item_id]


# =============================================================================
# SERVICE
# =============================================================================

class RentalInventoryService(BaseService):
    """
    Rental inventory CRUD with offline fallback.

    Every method returns a ServiceResult. When a write was queued rather than
    applied, `metadata["queued"]` is True and `error` carries the user-facing
    message ("Offline: change queued for sync.").
    """

    def __init__(self, offline: OfflineService):
        super().__init__()
        self.offline = offline

    # ----- cache helpers ------------------------------------------------------

    def _cached_records(self) -> List[RentalItem]:
        cached = self.offline.context.store.get(STORAGE_KEY) or []
        return sort_records([RentalItem.from_dict(row) for row in cached])

    def _persist(self, records: List[RentalItem]) -> None:
        result = self.offline.context.store.set(STORAGE_KEY, [r.to_dict() for r in sort_records(records)])
        if not result:
            self.logger.warning(f"Could not update cached rental inventory: {result.error}")

    def _merge_pending(self, records: List[RentalItem]) -> List[RentalItem]:
        merged = list(records)
        for op in self.offline.context.queue.pending(TABLE_NAME):
            payload = dict(op.data)
            if op.type == OperationType.CREATE:
                merged = upsert_record(merged, RentalItem.from_dict(payload))
            elif op.type == OperationType.UPDATE:
                existing = next((r for r in merged if r.id == str(payload["id"])), None)
                base = existing.to_dict() if existing else {"id": payload["id"]}
                base.update(payload)
                merged = upsert_record(merged, RentalItem.from_dict(base))
            elif op.type == OperationType.DELETE:
                merged = remove_record(merged, str(payload["id"]))
        return merged

    def _write(self, op_type: OperationType, payload: Dict[str, Any]) -> ServiceResult:
        outcome = self.safe_execute(
            f"{op_type.value} rental item", self.offline.mutate, op_type, TABLE_NAME, payload
        )
        if not outcome:
            return outcome
        result = outcome.data
        if result and result.metadata.get("queued"):
            result.error = result.metadata.get("message")
        return result

    # ----- public API ---------------------------------------------------------

    def list_items(self) -> ServiceResult:
        """All items, cached rows used when offline, pending edits applied."""
        fetched = self.offline.fetch_table(TABLE_NAME, STORAGE_KEY, order_by="category")
        rows = fetched.data or []
        records = sort_records([RentalItem.from_dict(row) for row in rows])
        records = self._merge_pending(records)

        metadata = {"from_cache": fetched.from_cache, "stale": self.offline.is_stale(STORAGE_KEY)}
        result = ServiceResult.ok(records, metadata=metadata)
        if fetched.from_cache:
            result.error = "Unable to fetch rental inventory from the server."
        return result

    def create_item(
        self,
        category: str,
        item_name: str,
        total: Any = 0,
        working: Any = 0,
        faulty: Any = 0,
        inactive: Any = 0,
    ) -> ServiceResult:
        try:
            if not item_name or not item_name.strip():
                raise PayloadValidationError("Item name is required", table=TABLE_NAME, field="item_name")
            if not category or not category.strip():
                raise PayloadValidationError("Category is required", table=TABLE_NAME, field="category")
            parsed = {
                name: parse_count(name, value)
                for name, value in zip(COUNT_FIELDS, (total, working, faulty, inactive))
            }
            _check_total(parsed)
        except PayloadValidationError as e:
            return ServiceResult.from_exception(e)

        record = RentalItem(
            id=str(uuid.uuid4()),
            category=sanitize_category(category),
            item_name=sanitize_text(item_name),
            **normalize_counts(**parsed),
        )

        result = self._write(OperationType.CREATE, record.to_dict())
        if not result:
            return result

        created = record
        if not result.metadata.get("queued") and isinstance(result.data, list) and result.data:
            created = RentalItem.from_dict(result.data[0])
        self._persist(upsert_record(self._cached_records(), created))
        result.data = created
        return result

    def update_item(self, item_id: str, **updates: Any) -> ServiceResult:
        if not item_id:
            return ServiceResult.fail("Record id is required.", error_code="DATA_001")

        known = {k: v for k, v in updates.items() if v is not None and k in ("category", "item_name") + COUNT_FIELDS}
        if not known:
            return ServiceResult.fail("Provide at least one field to update", error_code="DATA_001")

        try:
            sanitized: Dict[str, Any] = {}
            if known.get("category"):
                sanitized["category"] = sanitize_category(known["category"])
            if known.get("item_name"):
                sanitized["item_name"] = sanitize_text(known["item_name"])

            counts = {name: parse_count(name, known[name]) for name in COUNT_FIELDS if name in known}
            if len(counts) == len(COUNT_FIELDS):
                _check_total(counts)
        except PayloadValidationError as e:
            return ServiceResult.from_exception(e)

        existing = next((r for r in self._cached_records() if r.id == item_id), None)
        if counts:
            base = existing.to_dict() if existing else dict.fromkeys(COUNT_FIELDS, 0)
            sanitized.update(normalize_counts(**{name: counts.get(name, base[name]) for name in COUNT_FIELDS}))
        sanitized["updated_at"] = _now()

        result = self._write(OperationType.UPDATE, {"id": item_id, **sanitized})
        if not result:
            return result

        if not result.metadata.get("queued") and isinstance(result.data, list) and result.data:
            updated = RentalItem.from_dict(result.data[0])
        else:
            base = existing.to_dict() if existing else {"id": item_id}
            base.update(sanitized)
            updated = RentalItem.from_dict(base)
        self._persist(upsert_record(self._cached_records(), updated))
        result.data = updated
        return result

    def delete_item(self, item_id: str) -> ServiceResult:
        if not item_id:
            return ServiceResult.fail("Record id is required.", error_code="DATA_001")

        result = self._write(OperationType.DELETE, {"id": item_id})
        if not result:
            return result

        self._persist(remove_record(self._cached_records(), item_id))
        result.data = {"id": item_id}
        return result
