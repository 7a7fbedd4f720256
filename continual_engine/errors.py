"""
Engine Errors

Exception taxonomy for the continual learning engine.
"""


class EngineError(Exception):
    """Base class for all engine errors."""


class ConfigurationError(EngineError, ValueError):
    """Invalid engine configuration or malformed input shape.

    Raised at construction (or before an epoch starts), never from the
    steady-state numeric paths.
    """


class CheckpointError(EngineError):
    """Checkpoint could not be written, read or decoded."""


class IntegrityError(CheckpointError):
    """Recomputed checkpoint state hash does not match the stored one."""

    def __init__(self, expected: str, actual: str, source: str = "checkpoint"):
        self.expected = expected
        self.actual = actual
        self.source = source
        super().__init__(
            f"State hash mismatch for {source}: expected {expected[:12]}..., got {actual[:12]}..."
        )


class CheckpointNotFoundError(CheckpointError):
    """Requested checkpoint is not registered."""
