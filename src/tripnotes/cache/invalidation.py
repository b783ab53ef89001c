"""In-process "trip changed" signal.

Every successful save, single-field edit and explicit invalidation publishes
a DocumentChanged message. Handlers run in registration order; a failing
handler is logged and does not stop the others or fail the publisher.

Example:
    notifier = ChangeNotifier()
    notifier.add_handler(warm_after_save)

    await notifier.publish(
        DocumentChanged(type=ChangeType.SAVED, document_id=trip_id, structural=True)
    )
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum

import orjson

logger = logging.getLogger(__name__)


class ChangeType(str, Enum):
    """What caused the change signal."""

    SAVED = "saved"
    FIELD_EDITED = "field_edited"
    INVALIDATED = "invalidated"


@dataclass
class DocumentChanged:
    """A trip's content changed in the store or was explicitly invalidated."""

    type: ChangeType
    document_id: str
    structural: bool = False
    user_id: str | None = None
    fragment_ids: list[str] = field(default_factory=list)

    def to_bytes(self) -> bytes:
        """Serialize to JSON bytes."""
        return orjson.dumps(
            {
                "type": self.type.value,
                "document_id": self.document_id,
                "structural": self.structural,
                "user_id": self.user_id,
                "fragment_ids": self.fragment_ids,
            }
        )

    @classmethod
    def from_bytes(cls, data: bytes) -> DocumentChanged:
        """Deserialize from JSON bytes."""
        parsed = orjson.loads(data)
        return cls(
            type=ChangeType(parsed["type"]),
            document_id=parsed["document_id"],
            structural=parsed.get("structural", False),
            user_id=parsed.get("user_id"),
            fragment_ids=parsed.get("fragment_ids", []),
        )


ChangeHandler = Callable[[DocumentChanged], Awaitable[None]]


class ChangeNotifier:
    """Delivers change messages to registered handlers."""

    def __init__(self) -> None:
        self._handlers: list[ChangeHandler] = []

    def add_handler(self, handler: ChangeHandler) -> None:
        """Register a handler for change messages."""
        self._handlers.append(handler)
        handler_name = getattr(handler, "__name__", handler.__class__.__name__)
        logger.info(f"Registered change handler: {handler_name}")

    def remove_handler(self, handler: ChangeHandler) -> None:
        if handler in self._handlers:
            self._handlers.remove(handler)

    async def publish(self, message: DocumentChanged) -> int:
        """Deliver ``message`` to every handler.

        Returns the number of handlers that completed without error.
        """
        delivered = 0
        for handler in list(self._handlers):
            try:
                await handler(message)
                delivered += 1
            except Exception as e:
                logger.error(
                    f"Change handler failed for {message.type.value} "
                    f"{message.document_id}: {e}"
                )
        logger.debug(
            f"Published {message.type.value} for trip {message.document_id} "
            f"to {delivered} handlers"
        )
        return delivered
