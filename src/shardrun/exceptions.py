"""Run-level errors. Per-worker failures are statuses, not exceptions."""

from __future__ import annotations

from shardrun.models.resources import EmergencyEvent, ResourceSnapshot


class ShardrunError(Exception):
    """Base class for errors that abort a whole run."""


class ResourceUnsafeError(ShardrunError):
    def __init__(self, snapshot: ResourceSnapshot):
        self.snapshot = snapshot
        failing = [
            name for name, usage in (
                ("memory", snapshot.memory), ("cpu", snapshot.cpu), ("disk", snapshot.disk),
            )
            if not usage.safe
        ]
        super().__init__(
            "System resources are not safe for test execution "
            f"(failing checks: {', '.join(failing) or 'unknown'})"
        )


class DiscoveryError(ShardrunError):
    """The test root cannot be read."""


class DiscoveryEmptyError(ShardrunError):
    """Discovery succeeded but found nothing to run."""


class SchedulingError(ShardrunError):
    """A produced schedule violates coverage or group concurrency."""


class EmergencyShutdownError(ShardrunError):
    def __init__(self, event: EmergencyEvent):
        self.event = event
        super().__init__(f"Emergency shutdown: {event.type.value} limit exceeded")
