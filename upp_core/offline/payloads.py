# =============================================================================
# upp_core/offline/payloads.py
# Per-table payload schemas for queued mutations
# =============================================================================
"""
Queued payloads are a tagged union keyed by table name. Each TableSchema says
which field identifies a row and which fields a CREATE must carry, plus the
accepted types for known fields. Validation runs at enqueue time so a bad
payload fails immediately instead of on replay.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Type

from upp_core.errors import PayloadValidationError
from upp_core.offline.local_store import OperationType

NUMBER = (int, float)
TEXT = (str,)
FLAG = (bool,)
ID = (str, int)


@dataclass(frozen=True)
class TableSchema:
    """Shape of a row payload for one remote table."""
    table: str
    required_on_create: Tuple[str, ...] = ()
    field_types: Mapping[str, Tuple[Type, ...]] = field(default_factory=dict)
    id_field: str = "id"

    def validate(self, op_type: OperationType, data: Mapping[str, Any]) -> None:
        if op_type in (OperationType.UPDATE, OperationType.DELETE):
            if data.get(self.id_field) in (None, ""):
                raise PayloadValidationError(
                    f"{op_type.value} on {self.table} requires '{self.id_field}'",
                    table=self.table,
                    field=self.id_field,
                    expected="non-empty id",
                )

        if op_type == OperationType.CREATE:
            missing = [f for f in self.required_on_create if data.get(f) in (None, "")]
            if missing:
                raise PayloadValidationError(
                    f"CREATE on {self.table} is missing required field(s): {', '.join(missing)}",
                    table=self.table,
                    field=missing[0],
                    expected="value",
                    actual="missing",
                )

        for name, value in data.items():
            expected = self.field_types.get(name)
            if expected is None or value is None:
                continue
            # bool is an int subclass; only accept it where FLAG is declared
            if isinstance(value, bool) and bool not in expected:
                ok = False
            else:
                ok = isinstance(value, expected)
            if not ok:
                raise PayloadValidationError(
                    f"Field '{name}' on {self.table} has the wrong type",
                    table=self.table,
                    field=name,
                    expected="/".join(t.__name__ for t in expected),
                    actual=type(value).__name__,
                )


DEFAULT_SCHEMAS: Mapping[str, TableSchema] = MappingProxyType({
    schema.table: schema
    for schema in (
        TableSchema(
            "orders",
            required_on_create=("client_name",),
            field_types={
                "id": ID, "client_name": TEXT, "job_type": TEXT, "status": TEXT,
                "amount": NUMBER, "paid": NUMBER, "quantity": NUMBER, "created_by": TEXT,
            },
        ),
        TableSchema(
            "expenses",
            required_on_create=("description", "amount"),
            field_types={"id": ID, "description": TEXT, "amount": NUMBER, "category": TEXT},
        ),
        TableSchema(
            "profiles",
            field_types={"id": ID, "name": TEXT, "email": TEXT, "role": TEXT, "phone": TEXT},
        ),
        TableSchema(
            "products",
            required_on_create=("name",),
            field_types={"id": ID, "name": TEXT, "price": NUMBER, "stock": NUMBER},
        ),
        TableSchema(
            "invoices",
            required_on_create=("order_id",),
            field_types={"id": ID, "order_id": ID, "total": NUMBER, "status": TEXT},
        ),
        TableSchema(
            "tasks",
            required_on_create=("title",),
            field_types={"id": ID, "title": TEXT, "status": TEXT, "assigned_to": ID, "priority": TEXT},
        ),
        TableSchema(
            "enquiries",
            required_on_create=("client_name",),
            field_types={"id": ID, "client_name": TEXT, "phone": TEXT, "email": TEXT, "status": TEXT},
        ),
        TableSchema(
            "rental_inventory",
            required_on_create=("category", "item_name"),
            field_types={
                "id": ID, "category": TEXT, "item_name": TEXT, "total": (int,),
                "working": (int,), "faulty": (int,), "inactive": (int,),
                "created_at": TEXT, "updated_at": TEXT,
            },
        ),
    )
})


class SchemaRegistry:
    """
    Table name -> TableSchema lookup owned by one OfflineContext.

    A new registry starts with the built-in DEFAULT_SCHEMAS; register() only
    affects this registry.
    """

    def __init__(self, schemas: Optional[Iterable[TableSchema]] = None):
        source = DEFAULT_SCHEMAS.values() if schemas is None else schemas
        self._schemas: Dict[str, TableSchema] = {schema.table: schema for schema in source}

    def get(self, table: str) -> Optional[TableSchema]:
        return self._schemas.get(table)

    def register(self, schema: TableSchema) -> None:
        """Add or replace the schema for a table."""
        self._schemas[schema.table] = schema

    @property
    def tables(self) -> List[str]:
        return sorted(self._schemas)

    def validate(self, op_type: OperationType, table: str, data: Any) -> None:
        """
        Validate a payload before it is queued.

        Tables without a registered schema only get the generic checks: the
        payload must be a mapping and UPDATE/DELETE must carry an 'id'.

        Raises:
            PayloadValidationError: when the payload is malformed
        """
        if not isinstance(table, str) or not table.strip():
            raise PayloadValidationError("Table name must be a non-empty string", expected="table name")
        if not isinstance(data, Mapping):
            raise PayloadValidationError(
                f"Payload for {table} must be a mapping",
                table=table,
                expected="dict",
                actual=type(data).__name__,
            )

        schema = self.get(table) or TableSchema(table)
        schema.validate(op_type, data)


def get_schema(table: str) -> Optional[TableSchema]:
    return DEFAULT_SCHEMAS.get(table)


def validate_payload(
    op_type: OperationType,
    table: str,
    data: Any,
    schemas: Optional[SchemaRegistry] = None,
) -> None:
    """Validate against `schemas`, or the built-in schemas when none is given."""
    (schemas or SchemaRegistry()).validate(op_type, table, data)
