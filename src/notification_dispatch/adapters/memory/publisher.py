"""InMemoryPublisher — IMessagePublisher with assertion helpers for tests."""

from __future__ import annotations

from typing import Any

from ...ports.messaging import IMessagePublisher


class InMemoryPublisher(IMessagePublisher):
    """Buffers published messages for test assertions.

    ``fail_with`` makes every publish raise, simulating a broker outage.
    """

    def __init__(self) -> None:
        self._published: list[tuple[str, Any, dict[str, Any]]] = []
        self.fail_with: Exception | None = None

    async def publish(self, topic: str, message: Any, **kwargs: Any) -> None:
        if self.fail_with is not None:
            raise self.fail_with
        self._published.append((topic, message, kwargs))

    def get_published(self) -> list[tuple[str, Any, dict[str, Any]]]:
        """Return all (topic, message, kwargs) published so far."""
        return list(self._published)

    def topics(self) -> list[str]:
        return [topic for topic, _, _ in self._published]

    def assert_published(self, event_type: str, count: int = 1) -> None:
        """Assert that exactly `count` messages were published to `event_type`."""
        matching = [t for t in self.topics() if t == event_type]
        assert len(matching) == count, (
            f"Expected {count} message(s) with event_type={event_type!r}, "
            f"got {len(matching)}. Published: {self.topics()}"
        )

    def clear(self) -> None:
        self._published.clear()
