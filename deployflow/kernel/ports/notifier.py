"""Notifier and Observer ports.

A :class:`Notifier` is told when a run starts waiting for approval and when
it reaches a terminal status. :class:`Observer` instances see every event.
Neither can affect execution: failures are logged and swallowed by the
engine.
"""

from __future__ import annotations

from abc import abstractmethod
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from deployflow.kernel.orchestration.events import Event


@runtime_checkable
class Notifier(Protocol):
    """Port for out-of-band notifications (chat, webhook, email)."""

    @abstractmethod
    async def anotify(self, event: Event) -> None:
        """Deliver a notification for ``event``."""
        ...


@runtime_checkable
class Observer(Protocol):
    """Protocol for read-only event observers."""

    async def handle(self, event: Event) -> None:
        """Handle an event (read-only, no return value)."""
        ...


__all__ = ["Notifier", "Observer"]
