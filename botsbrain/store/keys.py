"""
Key-space of the bots store.

Keys are shared with every other process reading the same Redis and
database, so the formats below must not change.
"""

from typing import Union

ChatId = Union[int, str]

ADMIN_PROFILE_IDS = "admin_profile_ids"


def ticket_by_message(message_id: int) -> str:
    return f"ticket:telegram:{message_id}"


def ticket_by_conversation(conversation_id: str) -> str:
    return f"ticket:unthread:{conversation_id}"


# Ticket ids and conversation ids share one namespace
ticket_by_ticket_id = ticket_by_conversation


def ticket_by_friendly(friendly_id: str) -> str:
    return f"ticket:friendly:{friendly_id}"


def chat_tickets(chat_id: ChatId) -> str:
    return f"chat:tickets:{chat_id}"


def user_state(user_id: int) -> str:
    return f"user:state:{user_id}"


def customer_by_id(customer_id: str) -> str:
    return f"customer:id:{customer_id}"


def customer_by_chat(chat_id: ChatId) -> str:
    return f"customer:telegram:{chat_id}"


def legacy_customer_by_unthread(customer_id: str) -> str:
    return f"customer:unthread:{customer_id}"


def user_profile(user_id: int) -> str:
    return f"user:telegram:{user_id}"


def agent_message(message_id: int) -> str:
    return f"agent_message:telegram:{message_id}"


def group_config(chat_id: ChatId) -> str:
    return f"group_config:{chat_id}"


def setup_state(chat_id: ChatId) -> str:
    return f"setup_state:{chat_id}"


def setup_session(session_id: str) -> str:
    return f"session:setup:{session_id}"


def setup_session_by_admin(admin_id: int) -> str:
    return f"session:admin:{admin_id}"


def setup_session_by_group(group_chat_id: ChatId) -> str:
    return f"session:group:{group_chat_id}"


def dm_session(session_id: str) -> str:
    return f"dm_session:{session_id}"


def dm_session_by_admin(admin_id: int) -> str:
    return f"dm_session:admin:{admin_id}"


def admin_profile(admin_id: int) -> str:
    return f"admin:profile:{admin_id}"


def global_config(name: str) -> str:
    return f"global_config:{name}"


def message_template(group_chat_id: ChatId, template_id: str) -> str:
    return f"template:{group_chat_id}:{template_id}"


def message_template_index(group_chat_id: ChatId) -> str:
    return f"template:index:{group_chat_id}"
