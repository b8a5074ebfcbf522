"""
Replication exceptions.

Every error raised by the replication engine derives from ReplicationError so
the orchestrator can tell engine failures apart from programming errors.
"""


class ReplicationError(Exception):
    """Base exception for all replication errors."""
    pass


class SlotError(ReplicationError):
    """Raised when a replication slot cannot be inspected, dropped, created or consumed."""

    def __init__(self, message, slot_name=None):
        self.message = message
        self.slot_name = slot_name
        super().__init__(self.message)

    def __str__(self):
        if self.slot_name:
            return f"{self.message} (slot={self.slot_name})"
        return self.message


class DecodeError(ReplicationError):
    """Raised when a raw change record cannot be parsed into a ChangeEvent."""

    def __init__(self, message, raw=None):
        self.message = message
        self.raw = raw
        super().__init__(self.message)


class ApplyError(ReplicationError):
    """Raised when a decoded change event cannot be applied to the target."""

    def __init__(self, message, event=None):
        self.message = message
        self.event = event
        super().__init__(self.message)
