# =============================================================================
# tests/unit/test_mutation_queue.py
# Unit Tests for MutationQueue and payload validation
# =============================================================================

import numpy as np
import pytest

from upp_core.errors import PayloadValidationError
from upp_core.offline import (
    EventKind,
    LocalStore,
    MutationQueue,
    OperationType,
    SchemaRegistry,
    TableSchema,
    validate_payload,
)
from upp_core.offline.mutation_queue import coerce_operation_type


class TestEnqueue:
    """Test queuing mutations"""

    def test_enqueue_returns_table_prefixed_id(self, queue):
        op_id = queue.enqueue("CREATE", "orders", {"client_name": "Ama"})

        assert op_id.startswith("orders_")
        assert queue.count() == 1

    def test_ids_are_unique(self, queue):
        ids = {queue.enqueue("CREATE", "orders", {"client_name": f"c{i}"}) for i in range(20)}

        assert len(ids) == 20

    def test_pending_in_fifo_order(self, queue):
        first = queue.enqueue("CREATE", "orders", {"client_name": "A"})
        second = queue.enqueue(OperationType.UPDATE, "orders", {"id": "o-1", "status": "done"})
        third = queue.enqueue("delete", "orders", {"id": "o-2"})

        assert [op.id for op in queue.pending()] == [first, second, third]
        assert [op.type for op in queue.pending()] == [
            OperationType.CREATE,
            OperationType.UPDATE,
            OperationType.DELETE,
        ]

    def test_pending_filters_by_table(self, queue):
        queue.enqueue("CREATE", "orders", {"client_name": "A"})
        queue.enqueue("CREATE", "tasks", {"title": "Print flyers"})

        assert [op.table for op in queue.pending("tasks")] == ["tasks"]

    def test_numpy_values_are_stored_as_plain_json(self, queue):
        queue.enqueue("CREATE", "expenses", {"description": "Ink", "amount": np.float64(40.5)})

        assert queue.pending()[0].data == {"description": "Ink", "amount": 40.5}

    def test_enqueue_publishes_queue_changed(self, queue, channel):
        sub = channel.subscribe("test", kinds=[EventKind.QUEUE_CHANGED])

        queue.enqueue("CREATE", "orders", {"client_name": "A"})

        events = sub.drain()
        assert len(events) == 1
        assert events[0].payload["pending"] == 1

    def test_clear(self, queue, channel):
        queue.enqueue("CREATE", "orders", {"client_name": "A"})

        assert queue.clear()
        assert queue.count() == 0


class TestEnqueueRejections:
    """Test malformed mutations are rejected before they are queued"""

    def test_unknown_operation_type(self, queue):
        with pytest.raises(PayloadValidationError):
            queue.enqueue("UPSERT", "orders", {"client_name": "A"})
        assert queue.count() == 0

    def test_update_without_id(self, queue):
        with pytest.raises(PayloadValidationError) as exc_info:
            queue.enqueue("UPDATE", "orders", {"status": "done"})
        assert exc_info.value.details["field"] == "id"

    def test_delete_with_empty_id(self, queue):
        with pytest.raises(PayloadValidationError):
            queue.enqueue("DELETE", "orders", {"id": ""})

    def test_create_missing_required_field(self, queue):
        with pytest.raises(PayloadValidationError) as exc_info:
            queue.enqueue("CREATE", "expenses", {"description": "Ink"})
        assert exc_info.value.details["field"] == "amount"

    def test_non_mapping_payload(self, queue):
        with pytest.raises(PayloadValidationError):
            queue.enqueue("CREATE", "orders", ["not", "a", "dict"])

    def test_unserializable_payload(self, queue):
        with pytest.raises(PayloadValidationError):
            queue.enqueue("CREATE", "notes", {"blob": object()})
        assert queue.count() == 0


class TestStorageFailure:
    """Test enqueue on a store that cannot persist"""

    def test_degraded_store_returns_none_and_reports(self, tmp_path, channel):
        broken = LocalStore(tmp_path)
        broken.initialize()
        queue = MutationQueue(broken, channel)
        sub = channel.subscribe("test", kinds=[EventKind.STORAGE_FAILURE])

        op_id = queue.enqueue("CREATE", "orders", {"client_name": "A"})

        assert op_id is None
        events = sub.drain()
        assert len(events) == 1
        assert events[0].payload["message"] == "Changes may not be saved offline"
        assert events[0].payload["quota_exceeded"] is False


class TestPayloadSchemas:
    """Test per-table payload schemas"""

    def test_wrong_field_type(self):
        with pytest.raises(PayloadValidationError) as exc_info:
            validate_payload(OperationType.CREATE, "expenses", {"description": "Ink", "amount": "forty"})
        assert exc_info.value.details["field"] == "amount"

    def test_bool_rejected_for_integer_field(self):
        with pytest.raises(PayloadValidationError):
            validate_payload(
                OperationType.UPDATE, "rental_inventory", {"id": "r-1", "total": True}
            )

    def test_none_values_are_allowed(self):
        validate_payload(OperationType.UPDATE, "orders", {"id": "o-1", "amount": None})

    def test_unknown_table_gets_generic_checks(self):
        validate_payload(OperationType.CREATE, "notes", {"anything": 1})
        with pytest.raises(PayloadValidationError):
            validate_payload(OperationType.UPDATE, "notes", {"anything": 1})

    def test_empty_table_name(self):
        with pytest.raises(PayloadValidationError):
            validate_payload(OperationType.CREATE, " ", {"a": 1})

    def test_register_schema_on_registry(self):
        schemas = SchemaRegistry()
        schemas.register(TableSchema("stickers", required_on_create=("label",), id_field="sticker_id"))

        with pytest.raises(PayloadValidationError):
            schemas.validate(OperationType.CREATE, "stickers", {})
        with pytest.raises(PayloadValidationError):
            schemas.validate(OperationType.DELETE, "stickers", {"id": "s-1"})
        schemas.validate(OperationType.DELETE, "stickers", {"sticker_id": "s-1"})

    def test_registries_do_not_share_registrations(self):
        first = SchemaRegistry()
        second = SchemaRegistry()

        first.register(TableSchema("stickers", required_on_create=("label",)))

        assert "stickers" in first.tables
        assert "stickers" not in second.tables
        second.validate(OperationType.CREATE, "stickers", {})
        validate_payload(OperationType.CREATE, "stickers", {})

    def test_queue_uses_its_own_registry(self, store, channel):
        schemas = SchemaRegistry()
        schemas.register(TableSchema("stickers", required_on_create=("label",)))
        strict = MutationQueue(store, channel, schemas)

        with pytest.raises(PayloadValidationError):
            strict.enqueue("CREATE", "stickers", {})
        assert MutationQueue(store, channel).enqueue("CREATE", "stickers", {"size": "A6"})

    def test_coerce_operation_type_accepts_any_case(self):
        assert coerce_operation_type("update") == OperationType.UPDATE
        assert coerce_operation_type(OperationType.DELETE) == OperationType.DELETE
