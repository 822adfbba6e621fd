"""SSE streaming manager for committed contract changes.

The lifecycle flow publishes one event per committed operation; API
endpoints consume them per contract via ``async for`` iteration.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import AsyncIterator

import structlog

from contract_workflow.models import ContractEvent, TransitionResult

logger = structlog.get_logger(__name__)

# ---------------------------------------------------------------------------
# Canonical event type constants
# ---------------------------------------------------------------------------

EVENT_TRANSITION = "transition"
EVENT_CONTRACT_CREATED = "contract_created"
EVENT_CONTRACT_UPDATED = "contract_updated"
EVENT_CLOSED = "closed"


class ContractEventStream:
    """In-memory pub/sub for contract SSE events.

    Each subscriber gets its own ``asyncio.Queue`` so that several SSE
    clients can follow the same contract independently. The most recent
    events per contract are kept so late joiners can catch up.
    """

    def __init__(self, max_queue_size: int = 256, history_size: int = 100) -> None:
        self._queues: dict[str, list[asyncio.Queue[ContractEvent | None]]] = {}
        self._max_queue_size = max_queue_size
        self._history_size = history_size
        self._history: dict[str, list[ContractEvent]] = {}

    # ------------------------------------------------------------------
    # Publishing
    # ------------------------------------------------------------------

    def publish(self, action: str, result: TransitionResult) -> list[ContractEvent]:
        """Fan a committed result out to the subscribers of every contract it touched."""
        contract = result.contract
        events = [
            self.emit(
                contract_id=contract.id,
                event_type=EVENT_TRANSITION,
                data={
                    "action": action,
                    "status": contract.status.value,
                    "revision": contract.revision,
                    "notifications": [n.model_dump(mode="json") for n in result.notifications],
                },
                message=f"{action} committed; contract is {contract.status.value}.",
            )
        ]
        for created in result.created_contracts:
            data = {
                "contract_id": created.id,
                "parent_contract_id": contract.id,
                "title": created.title,
                "status": created.status.value,
            }
            # Announced on both the originating and the new contract's stream.
            for stream_id in (contract.id, created.id):
                events.append(
                    self.emit(
                        contract_id=stream_id,
                        event_type=EVENT_CONTRACT_CREATED,
                        data=data,
                        message=f'Successor contract "{created.title}" created.',
                    )
                )
        for related in result.related_contracts:
            events.append(
                self.emit(
                    contract_id=related.id,
                    event_type=EVENT_CONTRACT_UPDATED,
                    data={
                        "action": action,
                        "cause_contract_id": contract.id,
                        "status": related.status.value,
                        "revision": related.revision,
                    },
                    message=f"{action} on {contract.id} left this contract {related.status.value}.",
                )
            )
        return events

    def emit(
        self,
        contract_id: str,
        event_type: str,
        data: dict | None = None,
        message: str = "",
    ) -> ContractEvent:
        """Push an event to all subscribers of *contract_id*.

        Returns the constructed :class:`ContractEvent` for convenience.
        """
        event = ContractEvent(
            event_type=event_type,
            contract_id=contract_id,
            data=data or {},
            message=message,
            timestamp=datetime.now(tz=timezone.utc),
        )

        history = self._history.setdefault(contract_id, [])
        history.append(event)
        del history[:-self._history_size]

        queues = self._queues.get(contract_id, [])
        for queue in queues:
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                logger.warning(
                    "event_queue_full",
                    contract_id=contract_id,
                    event_type=event_type,
                )

        logger.debug(
            "event_emitted",
            contract_id=contract_id,
            event_type=event_type,
            subscribers=len(queues),
        )
        return event

    # ------------------------------------------------------------------
    # Subscribing
    # ------------------------------------------------------------------

    async def subscribe(self, contract_id: str, replay: bool = True) -> AsyncIterator[ContractEvent]:
        """Yield events for *contract_id* as they arrive.

        The iterator ends when ``close(contract_id)`` is called, which
        pushes ``None`` as a sentinel.
        """
        queue: asyncio.Queue[ContractEvent | None] = asyncio.Queue(
            maxsize=self._max_queue_size
        )
        self._queues.setdefault(contract_id, []).append(queue)

        try:
            if replay:
                for past_event in self.get_history(contract_id):
                    yield past_event
            while True:
                event = await queue.get()
                if event is None:
                    break
                yield event
        finally:
            contract_queues = self._queues.get(contract_id, [])
            if queue in contract_queues:
                contract_queues.remove(queue)

    # ------------------------------------------------------------------
    # Lifecycle helpers
    # ------------------------------------------------------------------

    def close(self, contract_id: str) -> None:
        """Signal all subscribers of *contract_id* to stop iterating."""
        for queue in self._queues.get(contract_id, []):
            try:
                queue.put_nowait(None)
            except asyncio.QueueFull:
                logger.warning("event_queue_full", contract_id=contract_id, event_type=EVENT_CLOSED)
        self._queues.pop(contract_id, None)

    def subscriber_count(self, contract_id: str) -> int:
        return len(self._queues.get(contract_id, []))

    def get_history(self, contract_id: str) -> list[ContractEvent]:
        """Return the retained events for a contract."""
        return list(self._history.get(contract_id, []))
