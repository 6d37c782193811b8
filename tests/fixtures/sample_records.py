"""
Sample records for store tests.
"""

from typing import Any, Dict


def sample_ticket(**overrides: Any) -> Dict[str, Any]:
    """The ticket used throughout the scenario tests (camelCase, as stored)."""
    ticket = {
        "chatId": -100,
        "messageId": 55,
        "conversationId": "c1",
        "ticketId": "c1",
        "friendlyId": "TKT-001",
        "telegramUserId": 42,
        "createdAt": "2025-06-15T12:00:00.000Z",
    }
    ticket.update(overrides)
    return ticket


def sample_group_config(**overrides: Any) -> Dict[str, Any]:
    config = {
        "chatId": -200,
        "chatTitle": "Acme Support",
        "isConfigured": False,
        "botIsAdmin": True,
    }
    config.update(overrides)
    return config


def sample_setup_session(**overrides: Any) -> Dict[str, Any]:
    session = {
        "sessionId": "setup-1",
        "initiatingAdminId": 7,
        "groupChatId": -300,
        "groupChatName": "Acme Ops",
        "status": "in_progress",
        "currentStep": "customer_selection",
    }
    session.update(overrides)
    return session


def sample_admin(admin_id: int, **overrides: Any) -> Dict[str, Any]:
    profile = {
        "telegramUserId": admin_id,
        "telegramUsername": f"admin{admin_id}",
        "dmChatId": admin_id,
        "isActivated": True,
    }
    profile.update(overrides)
    return profile
