"""Notifier drivers."""

from deployflow.drivers.notifier.logging_notifier import LoggingNotifier
from deployflow.drivers.notifier.webhook import WebhookNotifier

__all__ = ["LoggingNotifier", "WebhookNotifier"]
