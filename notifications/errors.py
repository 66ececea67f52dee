"""Error taxonomy for the delivery pipeline.

None of these are fatal to the process. Each marks which recovery applies:
poison payloads are dropped, unavailable collaborators degrade to defaults,
channel failures are logged per channel, formatter failures abandon the
recipient's batch for the current cycle.
"""

from __future__ import annotations


class NotificationError(Exception):
    """Base class for pipeline errors."""


class PoisonPayloadError(NotificationError):
    """A queue entry that can never be processed (bad JSON, missing tag)."""


class CollaboratorUnavailableError(NotificationError):
    """A downstream service lookup failed."""


class DeliveryChannelError(NotificationError):
    """Push, persist or email delivery failed for one recipient."""

    def __init__(self, channel: str, message: str):
        super().__init__(f"{channel}: {message}")
        self.channel = channel


class FormatterError(NotificationError):
    """A batch could not be turned into notifications."""
