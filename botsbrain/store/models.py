"""
Record Models for the bots store
Typed views over the JSON payloads kept in UnifiedStorage

Fields are snake_case in Python and camelCase in the stored JSON, so
records written by other bot processes load unchanged. Unknown fields are
kept and written back.
"""

from enum import Enum
from typing import Any, Dict, List, Literal, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class StoreRecord(BaseModel):
    """Base class of every stored record."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
    )

    def to_storage(self) -> Dict[str, Any]:
        """JSON-ready dict in the stored (camelCase) layout."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

    @classmethod
    def field_name(cls, key: str) -> str:
        """Map a camelCase alias to its field name; unknown keys pass through."""
        if key in cls.model_fields:
            return key
        for name in cls.model_fields:
            if to_camel(name) == key:
                return name
        return key

    @classmethod
    def normalize_updates(cls, updates: Mapping[str, Any]) -> Dict[str, Any]:
        return {cls.field_name(key): value for key, value in updates.items()}


# ----------------------------------------------------------------------
# Tickets
# ----------------------------------------------------------------------

class TicketData(StoreRecord):
    """One support conversation bound to one chat message."""
    chat_id: int
    message_id: int
    conversation_id: str
    ticket_id: Optional[str] = None
    friendly_id: str
    telegram_user_id: Optional[int] = None
    created_at: Optional[str] = None
    customer_id: Optional[str] = None
    summary: Optional[str] = None
    status: Optional[str] = None
    platform: Optional[str] = None
    stored_at: Optional[str] = None
    version: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None

    @property
    def has_distinct_ticket_id(self) -> bool:
        return bool(self.ticket_id) and self.ticket_id != self.conversation_id


class TicketInfo(StoreRecord):
    """Entry of a chat's ticket index."""
    message_id: int
    conversation_id: str
    friendly_id: str = ""


# ----------------------------------------------------------------------
# Customers and users
# ----------------------------------------------------------------------

class CustomerData(StoreRecord):
    id: str
    unthread_customer_id: str
    telegram_chat_id: int
    chat_id: Optional[int] = None
    chat_title: Optional[str] = None
    customer_name: Optional[str] = None
    email: Optional[str] = None
    name: Optional[str] = None
    company: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @property
    def display_name(self) -> str:
        return self.name or self.company or self.customer_name or self.unthread_customer_id


class UserData(StoreRecord):
    telegram_user_id: int
    id: Optional[str] = None
    telegram_username: Optional[str] = None
    unthread_name: Optional[str] = None
    unthread_email: Optional[str] = None
    username: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class AgentMessageData(StoreRecord):
    """Outbound agent message tracked for reply routing."""
    message_id: int
    conversation_id: str
    chat_id: int
    friendly_id: Optional[str] = None
    original_ticket_message_id: Optional[int] = None
    sent_at: Optional[str] = None
    platform: Optional[str] = None
    type: Optional[str] = None
    stored_at: Optional[str] = None
    version: Optional[str] = None


# ----------------------------------------------------------------------
# Group setup
# ----------------------------------------------------------------------

class GroupConfig(StoreRecord):
    chat_id: int
    is_configured: bool
    bot_is_admin: bool
    chat_title: Optional[str] = None
    customer_id: Optional[str] = None
    customer_name: Optional[str] = None
    setup_by: Optional[int] = None
    setup_at: Optional[str] = None
    last_admin_check: Optional[str] = None
    setup_version: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    last_updated_at: Optional[str] = None
    version: Optional[str] = None


class SetupStep(str, Enum):
    BOT_ADMIN_CHECK = "bot_admin_check"
    CUSTOMER_SELECTION = "customer_selection"
    CUSTOMER_CREATION = "customer_creation"
    CUSTOMER_LINKING = "customer_linking"
    COMPLETE = "complete"


class SetupState(StoreRecord):
    """In-chat setup wizard state."""
    chat_id: int
    step: SetupStep
    initiated_by: int
    started_at: str
    suggested_customer_name: Optional[str] = None
    user_input: Optional[str] = None
    retry_count: Optional[int] = None
    metadata: Optional[Dict[str, Any]] = None
    last_updated_at: Optional[str] = None
    version: Optional[str] = None


# ----------------------------------------------------------------------
# Admins and sessions
# ----------------------------------------------------------------------

class AdminProfile(StoreRecord):
    telegram_user_id: int
    telegram_username: Optional[str] = None
    dm_chat_id: Optional[int] = None
    is_activated: bool = False
    activated_at: Optional[str] = None
    last_active_at: Optional[str] = None
    platform: Optional[str] = None
    type: Optional[str] = None
    stored_at: Optional[str] = None
    version: Optional[str] = None


class SetupSession(StoreRecord):
    """Group setup wizard: in_progress -> completed | expired | cancelled."""
    session_id: str
    initiating_admin_id: int
    status: Literal["in_progress", "completed", "expired", "cancelled"] = "in_progress"
    group_chat_id: Optional[int] = None
    group_chat_name: Optional[str] = None
    started_at: Optional[str] = None
    expires_at: Optional[str] = None
    current_step: Optional[str] = None
    step_data: Dict[str, Any] = Field(default_factory=dict)
    message_ids: List[int] = Field(default_factory=list)
    platform: Optional[str] = None
    type: Optional[str] = None
    stored_at: Optional[str] = None
    version: Optional[str] = None


class DmSetupSession(StoreRecord):
    """Setup wizard run in an admin's private chat: active -> completed | cancelled."""
    session_id: str
    admin_id: int
    expires_at: str
    status: Literal["active", "completed", "cancelled"] = "active"
    group_chat_id: Optional[int] = None
    group_chat_name: Optional[str] = None
    current_step: Optional[str] = None
    step_data: Dict[str, Any] = Field(default_factory=dict)
    message_ids: List[int] = Field(default_factory=list)
    started_at: Optional[str] = None


# ----------------------------------------------------------------------
# Templates
# ----------------------------------------------------------------------

class MessageTemplate(StoreRecord):
    id: str
    group_chat_id: int
    template_type: str
    name: str
    content: str
    variables: List[str] = Field(default_factory=list)
    is_default: bool = False
    is_active: bool = True
    created_by: Optional[int] = None
    created_at: Optional[str] = None
    last_modified_at: Optional[str] = None
    last_modified_by: Optional[int] = None
    version: int = 1
