"""
botsbrain Store
Entity-level storage for the bot, plus the context that owns it
"""

from botsbrain.store.bots_store import BotsStore, exclude_immutable_fields
from botsbrain.store.context import StorageContext
from botsbrain.store.errors import BotsBrainError, StoreNotInitializedError
from botsbrain.store.models import (
    AdminProfile,
    AgentMessageData,
    CustomerData,
    DmSetupSession,
    GroupConfig,
    MessageTemplate,
    SetupSession,
    SetupState,
    SetupStep,
    TicketData,
    TicketInfo,
    UserData,
)

__all__ = [
    "BotsStore",
    "StorageContext",
    "exclude_immutable_fields",
    # Errors
    "BotsBrainError",
    "StoreNotInitializedError",
    # Records
    "TicketData",
    "TicketInfo",
    "CustomerData",
    "UserData",
    "AgentMessageData",
    "GroupConfig",
    "SetupState",
    "SetupStep",
    "AdminProfile",
    "SetupSession",
    "DmSetupSession",
    "MessageTemplate",
]
