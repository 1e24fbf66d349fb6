# =============================================================================
# upp_core/offline/mutation_queue.py
# Durable queue of CREATE/UPDATE/DELETE intents
# =============================================================================

from __future__ import annotations
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional, Union
import logging

from upp_core.errors import PayloadValidationError
from upp_core.offline.channel import EventKind, NotificationChannel
from upp_core.offline.local_store import (
    LocalStore,
    OperationType,
    QueuedOperation,
    to_json_safe,
)
from upp_core.offline.payloads import SchemaRegistry

logger = logging.getLogger(__name__)


def coerce_operation_type(op_type: Union[str, OperationType]) -> OperationType:
    """Accept an OperationType or its name in any case."""
    if isinstance(op_type, OperationType):
        return op_type
    try:
        return OperationType(str(op_type).upper())
    except ValueError as e:
        raise PayloadValidationError(
            f"Unknown operation type: {op_type!r}",
            field="type",
            expected="CREATE/UPDATE/DELETE",
            actual=str(op_type),
        ) from e


class MutationQueue:
    """
    Records mutations made while offline for later replay.

    The queue does not apply optimistic updates; callers use the returned
    operation id to reflect the change in their own state.
    """

    def __init__(
        self,
        store: LocalStore,
        channel: NotificationChannel,
        schemas: Optional[SchemaRegistry] = None,
    ):
        self.store = store
        self.channel = channel
        self.schemas = schemas or SchemaRegistry()

    def enqueue(
        self,
        op_type: Union[str, OperationType],
        table: str,
        data: Dict[str, Any],
    ) -> Optional[str]:
        """
        Validate and persist a mutation.

        Returns:
            The new operation id, or None when the store could not persist it

        Raises:
            PayloadValidationError: malformed type, table or payload
        """
        op_type = coerce_operation_type(op_type)
        clean = to_json_safe(data) if isinstance(data, dict) else data
        self.schemas.validate(op_type, table, clean)

        op = QueuedOperation(
            id=f"{table}_{uuid.uuid4().hex}",
            type=op_type,
            table=table,
            data=clean,
            enqueued_at=datetime.now(),
        )

        result = self.store.enqueue(op)
        if not result:
            logger.error(f"Failed to queue {op_type.value} on {table}: {result.error}")
            self.channel.emit(
                EventKind.STORAGE_FAILURE,
                source="mutation_queue",
                operation=op_type.value,
                table=table,
                quota_exceeded=result.quota_exceeded,
                message="Changes may not be saved offline",
            )
            return None

        logger.info(f"Added to sync queue: {op_type.value} {table}")
        self.channel.emit(EventKind.QUEUE_CHANGED, source="mutation_queue", pending=self.count())
        return op.id

    def count(self) -> int:
        """Number of operations waiting for replay."""
        return self.store.count_ops()

    def pending(self, table: Optional[str] = None) -> List[QueuedOperation]:
        """Queued operations in FIFO order, optionally for one table."""
        ops = self.store.dequeue_all()
        if table is None:
            return ops
        return [op for op in ops if op.table == table]

    def clear(self) -> bool:
        """Drop all queued operations. Returns False if the store refused."""
        result = self.store.clear_queue()
        if result:
            logger.warning(f"Sync queue cleared ({result.value} operation(s) dropped)")
            self.channel.emit(EventKind.QUEUE_CHANGED, source="mutation_queue", pending=0)
        return bool(result)
