"""
Exceptions raised by botsbrain.

Storage faults never surface as exceptions; only programming errors do.
"""


class BotsBrainError(Exception):
    """Base class for botsbrain errors."""


class StoreNotInitializedError(BotsBrainError, RuntimeError):
    """The store was used before StorageContext.initialize() completed."""

    def __init__(self, message: str = "BotsStore not initialized. Call StorageContext.initialize() first."):
        super().__init__(message)
