"""Tests for the in-process change signal."""

import pytest

from tripnotes.cache.invalidation import ChangeNotifier, ChangeType, DocumentChanged


class TestDocumentChanged:
    """Tests for the message itself."""

    def test_serialization(self) -> None:
        message = DocumentChanged(
            type=ChangeType.SAVED,
            document_id="t1",
            structural=True,
            user_id="u1",
            fragment_ids=["d1", "a1"],
        )

        assert DocumentChanged.from_bytes(message.to_bytes()) == message

    def test_defaults_when_fields_absent(self) -> None:
        """Older messages without optional fields still parse."""
        message = DocumentChanged.from_bytes(b'{"type": "invalidated", "document_id": "t1"}')

        assert message.type is ChangeType.INVALIDATED
        assert message.structural is False
        assert message.user_id is None
        assert message.fragment_ids == []


class TestChangeNotifier:
    """Tests for handler delivery."""

    @pytest.mark.asyncio
    async def test_handlers_run_in_registration_order(self) -> None:
        notifier = ChangeNotifier()
        calls: list[str] = []

        async def first(message: DocumentChanged) -> None:
            calls.append(f"first:{message.document_id}")

        async def second(message: DocumentChanged) -> None:
            calls.append(f"second:{message.document_id}")

        notifier.add_handler(first)
        notifier.add_handler(second)

        delivered = await notifier.publish(DocumentChanged(ChangeType.SAVED, "t1"))

        assert delivered == 2
        assert calls == ["first:t1", "second:t1"]

    @pytest.mark.asyncio
    async def test_failing_handler_does_not_stop_others(self) -> None:
        """A handler error is logged and the remaining handlers still run."""
        notifier = ChangeNotifier()
        received: list[DocumentChanged] = []

        async def broken(message: DocumentChanged) -> None:
            raise RuntimeError("boom")

        async def working(message: DocumentChanged) -> None:
            received.append(message)

        notifier.add_handler(broken)
        notifier.add_handler(working)

        delivered = await notifier.publish(DocumentChanged(ChangeType.FIELD_EDITED, "t1"))

        assert delivered == 1
        assert len(received) == 1

    @pytest.mark.asyncio
    async def test_remove_handler(self) -> None:
        notifier = ChangeNotifier()
        received: list[DocumentChanged] = []

        async def handler(message: DocumentChanged) -> None:
            received.append(message)

        notifier.add_handler(handler)
        notifier.remove_handler(handler)
        notifier.remove_handler(handler)

        assert await notifier.publish(DocumentChanged(ChangeType.SAVED, "t1")) == 0
        assert received == []
