"""Notifier that writes to the log. Used when no webhook is configured."""

from __future__ import annotations

from typing import TYPE_CHECKING

from deployflow.kernel.logging import get_logger
from deployflow.kernel.orchestration.events import RunFailed

if TYPE_CHECKING:
    from deployflow.kernel.orchestration.events import Event

logger = get_logger(__name__)


class LoggingNotifier:
    """Log each notification at WARNING for failures, INFO otherwise."""

    async def anotify(self, event: Event) -> None:
        level = "WARNING" if isinstance(event, RunFailed) else "INFO"
        logger.log(level, "[notify] {message}", message=event.log_message())
