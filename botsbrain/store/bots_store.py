"""
Bots Store for botsbrain
Entity-level storage operations built on the UnifiedStorage engine

Core Features:
- Tickets reachable by message id, conversation id, ticket id and friendly id
- Per-chat ticket index, admin id list and template index as auxiliary keys
- Customers, users, user conversation state and agent messages
- Group configuration and setup state with immutable-field protection
- Expiring setup sessions and DM setup sessions with reverse lookups
- Message templates with one default per type per group

Failure Policy:
- No method raises on storage errors; every fault is logged and turned
  into a sentinel (None, False or an empty list)
- Stored values that fail validation are logged and treated as absent

Version: 1.0.0
"""

import asyncio
import json
import math
import uuid
import weakref
from datetime import datetime, timezone
from typing import (
    Any, Awaitable, Callable, Dict, Iterable, List, Mapping,
    Optional, Sequence, Type, TypeVar, Union,
)

from loguru import logger
from pydantic import ValidationError

from botsbrain.cache.unified_storage import NO_EXPIRY, UnifiedStorage
from botsbrain.store import keys
from botsbrain.store.models import (
    AdminProfile,
    AgentMessageData,
    CustomerData,
    DmSetupSession,
    GroupConfig,
    MessageTemplate,
    SetupSession,
    SetupState,
    StoreRecord,
    TicketData,
    TicketInfo,
    UserData,
)


SETUP_STATE_TTL = 60 * 60  # 1 hour
SETUP_SESSION_TTL = 10 * 60  # 10 minutes
DM_SESSION_MIN_TTL = 5 * 60
DM_SESSION_EXTENSION = 30 * 60
RECORD_VERSION = "1.0"
PLATFORM = "telegram"

R = TypeVar("R", bound=StoreRecord)
RecordInput = Union[StoreRecord, Mapping[str, Any]]
CreateCustomerFn = Callable[[str], Awaitable[Any]]


def _iso(timestamp: float) -> str:
    return (
        datetime.fromtimestamp(timestamp, tz=timezone.utc)
        .isoformat(timespec="milliseconds")
        .replace("+00:00", "Z")
    )


def _parse_iso(value: Any) -> Optional[float]:
    """Parse an ISO-8601 timestamp (``Z`` suffix allowed) to epoch seconds."""
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (AttributeError, TypeError, ValueError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.timestamp()


def _decode(data: Any) -> Any:
    """
    Undo the extra JSON encoding some writers apply to stored values.

    Only JSON objects, arrays and strings are decoded, so a plain string
    such as "42" or "true" comes back unchanged.
    """
    if isinstance(data, str) and data[:1] in ("{", "[", '"'):
        try:
            return json.loads(data)
        except ValueError:
            return data
    return data


def exclude_immutable_fields(
    model: Type[StoreRecord],
    updates: Mapping[str, Any],
    existing: StoreRecord,
    immutable: Sequence[str] = (),
    once_set: Sequence[str] = (),
    context: str = "",
) -> Dict[str, Any]:
    """
    Strip protected fields from a partial update.

    Args:
        model: Record class, used to map camelCase keys to field names
        updates: Caller-supplied partial update
        existing: Currently stored record
        immutable: Fields that can never change
        once_set: Fields that can be filled while empty, then never change
        context: Entity description for the log line

    Returns:
        The update with protected fields removed, keyed by field name
    """
    safe = model.normalize_updates(updates)
    current = existing.model_dump()

    protected = list(immutable) + [
        name for name in once_set if current.get(name) not in (None, "")
    ]
    for name in protected:
        if name not in safe:
            continue
        attempted = safe.pop(name)
        if attempted != current.get(name):
            logger.warning(
                f"Attempted to update immutable field '{name}' on {context} "
                f"(kept {current.get(name)!r}, ignored {attempted!r})"
            )
    return safe


class BotsStore:
    """
    Domain store over a connected UnifiedStorage.

    Usage:
    ```python
    store = BotsStore(storage)
    await store.store_ticket(TicketData(chat_id=-100, message_id=55,
                                        conversation_id="c1", ticket_id="c1",
                                        friendly_id="TKT-001"))
    ticket = await store.get_ticket_by_friendly_id("TKT-001")
    ```

    Args:
        storage: Tiered engine, already connected
        serialize_customer_creation: Hold a per-chat lock around
            get_or_create_customer so concurrent callers in this process
            create at most one customer per chat
    """

    def __init__(
        self,
        storage: UnifiedStorage,
        serialize_customer_creation: bool = False,
    ):
        self.storage = storage
        self.serialize_customer_creation = serialize_customer_creation
        self._clock = storage.clock
        # Locks live only while a holder or waiter references them
        self._customer_locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = (
            weakref.WeakValueDictionary()
        )
        self._list_locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = (
            weakref.WeakValueDictionary()
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _now_iso(self) -> str:
        return _iso(self._clock())

    @staticmethod
    def _coerce(model: Type[R], value: RecordInput) -> R:
        if isinstance(value, model):
            return value
        if isinstance(value, StoreRecord):
            value = value.model_dump()
        return model.model_validate(value)

    @staticmethod
    def _load(model: Type[R], key: str, data: Any) -> Optional[R]:
        data = _decode(data)
        if data is None:
            return None
        try:
            return model.model_validate(data)
        except ValidationError as e:
            logger.error(f"Malformed {model.__name__} stored at {key}: {e}")
            return None

    async def _read(self, model: Type[R], key: str) -> Optional[R]:
        return self._load(model, key, await self.storage.get(key))

    async def _read_list(self, key: str) -> List[Any]:
        data = _decode(await self.storage.get(key))
        return data if isinstance(data, list) else []

    async def _read_scalar(self, key: str) -> Any:
        return _decode(await self.storage.get(key))

    def _list_lock(self, key: str) -> asyncio.Lock:
        lock = self._list_locks.get(key)
        if lock is None:
            lock = self._list_locks[key] = asyncio.Lock()
        return lock

    async def _update_list(
        self,
        key: str,
        update: Callable[[List[Any]], Optional[List[Any]]],
        ttl: Optional[int] = None,
    ) -> bool:
        """Read-modify-write of a list key; ``update`` returns None for no change."""
        async with self._list_lock(key):
            current = await self._read_list(key)
            updated = update(current)
            if updated is None:
                return True
            return await self.storage.set(key, updated, ttl)

    @staticmethod
    def _merge(model: Type[R], existing: R, updates: Mapping[str, Any], **stamps: Any) -> R:
        merged = {**existing.model_dump(), **updates, **stamps}
        return model.model_validate(merged)

    # ------------------------------------------------------------------
    # Tickets
    # ------------------------------------------------------------------

    @staticmethod
    def _ticket_keys(ticket: TicketData) -> List[str]:
        ticket_keys = [
            keys.ticket_by_message(ticket.message_id),
            keys.ticket_by_conversation(ticket.conversation_id),
            keys.ticket_by_friendly(ticket.friendly_id),
        ]
        if ticket.has_distinct_ticket_id:
            ticket_keys.append(keys.ticket_by_ticket_id(ticket.ticket_id))
        return ticket_keys

    async def store_ticket(self, ticket: RecordInput) -> bool:
        """
        Store a ticket under every lookup key and register it in its chat's index.

        All writes run concurrently; a failing key is logged and does not
        stop the others.
        """
        try:
            ticket = self._coerce(TicketData, ticket)
            enriched = ticket.model_copy(update={
                "platform": PLATFORM,
                "stored_at": self._now_iso(),
                "version": RECORD_VERSION,
            })
            payload = enriched.to_storage()

            fan_out, indexed = await asyncio.gather(
                self.storage.set_many({key: payload for key in self._ticket_keys(enriched)}),
                self._add_to_chat_tickets(enriched),
            )
            if not fan_out.ok or not indexed:
                logger.error(
                    f"Ticket {enriched.friendly_id} partially stored "
                    f"(failed keys: {fan_out.failed_keys}, indexed: {indexed})"
                )
                return False

            logger.info(f"Ticket stored: {enriched.friendly_id} ({enriched.conversation_id})")
            return True
        except Exception as e:
            logger.error(f"Failed to store ticket: {e}")
            return False

    async def _add_to_chat_tickets(self, ticket: TicketData) -> bool:
        entry = TicketInfo(
            message_id=ticket.message_id,
            conversation_id=ticket.conversation_id,
            friendly_id=ticket.friendly_id,
        ).to_storage()

        def append(entries: List[Any]) -> Optional[List[Any]]:
            if any(_index_conversation_id(e) == ticket.conversation_id for e in entries):
                return None
            return entries + [entry]

        return await self._update_list(keys.chat_tickets(ticket.chat_id), append)

    async def _remove_from_chat_tickets(self, chat_id: int, conversation_id: str) -> bool:
        def remove(entries: List[Any]) -> List[Any]:
            return [e for e in entries if _index_conversation_id(e) != conversation_id]

        return await self._update_list(keys.chat_tickets(chat_id), remove)

    async def get_ticket_by_conversation_id(self, conversation_id: str) -> Optional[TicketData]:
        return await self._get_ticket(keys.ticket_by_conversation(conversation_id))

    async def get_ticket_by_message_id(self, message_id: int) -> Optional[TicketData]:
        return await self._get_ticket(keys.ticket_by_message(message_id))

    async def get_ticket_by_friendly_id(self, friendly_id: str) -> Optional[TicketData]:
        return await self._get_ticket(keys.ticket_by_friendly(friendly_id))

    async def get_ticket_by_ticket_id(self, ticket_id: str) -> Optional[TicketData]:
        return await self._get_ticket(keys.ticket_by_ticket_id(ticket_id))

    async def _get_ticket(self, key: str) -> Optional[TicketData]:
        try:
            return await self._read(TicketData, key)
        except Exception as e:
            logger.error(f"Failed to get ticket at {key}: {e}")
            return None

    async def get_tickets_for_chat(self, chat_id: int) -> List[TicketData]:
        """Resolve every ticket in a chat's index, skipping ones that no longer resolve."""
        try:
            entries = await self._read_list(keys.chat_tickets(chat_id))
            conversation_ids = [
                cid for cid in (_index_conversation_id(e) for e in entries) if cid
            ]
            tickets = await asyncio.gather(
                *(self.get_ticket_by_conversation_id(cid) for cid in conversation_ids)
            )
            return [ticket for ticket in tickets if ticket is not None]
        except Exception as e:
            logger.error(f"Failed to get tickets for chat {chat_id}: {e}")
            return []

    async def delete_ticket(self, conversation_id: str) -> bool:
        """Delete every key of a ticket and drop it from its chat's index."""
        try:
            ticket = await self.get_ticket_by_conversation_id(conversation_id)
            if ticket is None:
                return True

            fan_out = await self.storage.delete_many(self._ticket_keys(ticket))
            indexed = await self._remove_from_chat_tickets(ticket.chat_id, conversation_id)

            if not fan_out.ok or not indexed:
                logger.error(
                    f"Ticket {ticket.friendly_id} partially deleted "
                    f"(failed keys: {fan_out.failed_keys}, index updated: {indexed})"
                )
                return False

            logger.info(f"Ticket deleted: {ticket.friendly_id}")
            return True
        except Exception as e:
            logger.error(f"Failed to delete ticket {conversation_id}: {e}")
            return False

    # ------------------------------------------------------------------
    # User conversation state
    # ------------------------------------------------------------------

    async def store_user_state(self, user_id: int, state: Mapping[str, Any]) -> bool:
        try:
            state_data = {**state, "updatedAt": self._now_iso()}
            logger.debug(f"Storing user state for {user_id}")
            return await self.storage.set(keys.user_state(user_id), state_data)
        except Exception as e:
            logger.error(f"Failed to store user state for {user_id}: {e}")
            return False

    async def get_user_state(self, user_id: int) -> Optional[Dict[str, Any]]:
        try:
            state = await self._read_scalar(keys.user_state(user_id))
            if state is None:
                return None
            if not isinstance(state, dict):
                logger.error(f"Malformed user state for {user_id}: {type(state).__name__}")
                return None
            return dict(state)
        except Exception as e:
            logger.error(f"Failed to get user state for {user_id}: {e}")
            return None

    async def clear_user_state(self, user_id: int) -> bool:
        try:
            return await self.storage.delete(keys.user_state(user_id))
        except Exception as e:
            logger.error(f"Failed to clear user state for {user_id}: {e}")
            return False

    # ------------------------------------------------------------------
    # Customers
    # ------------------------------------------------------------------

    async def store_customer(self, customer: RecordInput) -> bool:
        """Write the id and chat mappings of a customer as one pair."""
        try:
            customer = self._coerce(CustomerData, customer)
            now = self._now_iso()
            enriched = customer.model_copy(update={
                "created_at": customer.created_at or now,
                "updated_at": now,
            })
            payload = enriched.to_storage()

            fan_out = await self.storage.set_many({
                keys.customer_by_id(enriched.unthread_customer_id): payload,
                keys.customer_by_chat(enriched.telegram_chat_id): payload,
            })
            if not fan_out.ok:
                logger.error(
                    f"Customer {enriched.unthread_customer_id} partially stored "
                    f"(failed keys: {fan_out.failed_keys})"
                )
                return False

            logger.info(f"Customer stored: {enriched.display_name} ({enriched.unthread_customer_id})")
            return True
        except Exception as e:
            logger.error(f"Failed to store customer: {e}")
            return False

    async def get_customer_by_id(self, customer_id: str) -> Optional[CustomerData]:
        try:
            return await self._read(CustomerData, keys.customer_by_id(customer_id))
        except Exception as e:
            logger.error(f"Failed to get customer {customer_id}: {e}")
            return None

    async def get_customer_by_chat_id(self, chat_id: int) -> Optional[CustomerData]:
        try:
            return await self._read(CustomerData, keys.customer_by_chat(chat_id))
        except Exception as e:
            logger.error(f"Failed to get customer for chat {chat_id}: {e}")
            return None

    async def get_customer_by_unthread_id(self, customer_id: str) -> Optional[CustomerData]:
        """Look up by customer id, falling back to the legacy key layout."""
        customer = await self.get_customer_by_id(customer_id)
        if customer is not None:
            return customer
        try:
            return await self._read(CustomerData, keys.legacy_customer_by_unthread(customer_id))
        except Exception as e:
            logger.error(f"Failed to get legacy customer {customer_id}: {e}")
            return None

    async def has_customer(self, chat_id: int) -> bool:
        return await self.get_customer_by_chat_id(chat_id) is not None

    async def delete_customer(self, customer_id: str) -> bool:
        """Delete both mappings of a customer."""
        try:
            customer = await self.get_customer_by_id(customer_id)
            customer_keys = [keys.customer_by_id(customer_id)]
            if customer is not None:
                customer_keys.append(keys.customer_by_chat(customer.telegram_chat_id))

            fan_out = await self.storage.delete_many(customer_keys)
            if fan_out.ok:
                logger.info(f"Customer deleted: {customer_id}")
            return fan_out.ok
        except Exception as e:
            logger.error(f"Failed to delete customer {customer_id}: {e}")
            return False

    async def get_or_create_customer(
        self,
        chat_id: int,
        chat_title: str,
        create_fn: CreateCustomerFn,
    ) -> Optional[CustomerData]:
        """
        Return the chat's customer, creating it through ``create_fn`` on a miss.

        ``create_fn(chat_title)`` is awaited and must return an object or
        mapping with an ``id``. Without ``serialize_customer_creation`` two
        concurrent callers for one chat may both create a customer and the
        last write wins.

        Returns:
            The customer, or None if lookup or creation failed
        """
        if not self.serialize_customer_creation:
            return await self._get_or_create_customer(chat_id, chat_title, create_fn)

        lock_key = str(chat_id)
        lock = self._customer_locks.get(lock_key)
        if lock is None:
            lock = self._customer_locks[lock_key] = asyncio.Lock()
        async with lock:
            return await self._get_or_create_customer(chat_id, chat_title, create_fn)

    async def _get_or_create_customer(
        self,
        chat_id: int,
        chat_title: str,
        create_fn: CreateCustomerFn,
    ) -> Optional[CustomerData]:
        try:
            existing = await self.get_customer_by_chat_id(chat_id)
            if existing is not None:
                by_id = await self.storage.get(keys.customer_by_id(existing.unthread_customer_id))
                if by_id is not None:
                    logger.info(
                        f"Found existing customer for chat {chat_id}: {existing.unthread_customer_id}"
                    )
                    return existing

                logger.warning(
                    f"Dropping stale customer mapping for chat {chat_id} "
                    f"({existing.unthread_customer_id} no longer exists)"
                )
                await self.storage.delete(keys.customer_by_chat(chat_id))

            logger.info(f"Creating new customer for chat {chat_id}: {chat_title}")
            response = await create_fn(chat_title)
            customer_id = response["id"] if isinstance(response, Mapping) else response.id

            now = self._now_iso()
            customer = CustomerData(
                id=customer_id,
                unthread_customer_id=customer_id,
                telegram_chat_id=chat_id,
                company=chat_title,
                created_at=now,
                updated_at=now,
            )
            if not await self.store_customer(customer):
                logger.warning(f"Created customer {customer_id} for chat {chat_id} but could not cache it")

            logger.info(f"Created and cached new customer: {customer_id}")
            return customer
        except Exception as e:
            logger.error(f"Error in get_or_create_customer for chat {chat_id}: {e}")
            return None

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    async def store_user(self, user: RecordInput) -> bool:
        try:
            user = self._coerce(UserData, user)
            now = self._now_iso()
            enriched = user.model_copy(update={
                "created_at": user.created_at or now,
                "updated_at": now,
            })
            stored = await self.storage.set(keys.user_profile(enriched.telegram_user_id), enriched.to_storage())
            if stored:
                logger.info(f"User stored: {enriched.telegram_user_id}")
            return stored
        except Exception as e:
            logger.error(f"Failed to store user: {e}")
            return False

    async def get_user_by_telegram_id(self, user_id: int) -> Optional[UserData]:
        try:
            return await self._read(UserData, keys.user_profile(user_id))
        except Exception as e:
            logger.error(f"Failed to get user {user_id}: {e}")
            return None

    async def update_user(self, user_id: int, updates: Mapping[str, Any]) -> bool:
        """Merge a partial update into a stored user; unspecified fields are kept."""
        try:
            existing = await self.get_user_by_telegram_id(user_id)
            if existing is None:
                logger.warning(f"Cannot update non-existent user {user_id}")
                return False

            safe = exclude_immutable_fields(
                UserData, updates, existing,
                immutable=("telegram_user_id",),
                context=f"user {user_id}",
            )
            updated = self._merge(UserData, existing, safe, updated_at=self._now_iso())
            stored = await self.storage.set(keys.user_profile(user_id), updated.to_storage())
            if stored:
                logger.info(f"User {user_id} updated ({', '.join(safe) or 'no fields'})")
            return stored
        except Exception as e:
            logger.error(f"Failed to update user {user_id}: {e}")
            return False

    # ------------------------------------------------------------------
    # Agent messages
    # ------------------------------------------------------------------

    async def store_agent_message(self, message: RecordInput) -> bool:
        try:
            message = self._coerce(AgentMessageData, message)
            enriched = message.model_copy(update={
                "platform": PLATFORM,
                "type": "agent_message",
                "stored_at": self._now_iso(),
                "version": RECORD_VERSION,
            })
            stored = await self.storage.set(keys.agent_message(enriched.message_id), enriched.to_storage())
            if stored:
                logger.info(
                    f"Agent message stored: {enriched.message_id} for conversation {enriched.conversation_id}"
                )
            return stored
        except Exception as e:
            logger.error(f"Failed to store agent message: {e}")
            return False

    async def get_agent_message(self, message_id: int) -> Optional[AgentMessageData]:
        try:
            return await self._read(AgentMessageData, keys.agent_message(message_id))
        except Exception as e:
            logger.error(f"Failed to get agent message {message_id}: {e}")
            return None

    # ------------------------------------------------------------------
    # Group configuration
    # ------------------------------------------------------------------

    async def store_group_config(self, config: RecordInput) -> bool:
        try:
            config = self._coerce(GroupConfig, config)
            enriched = config.model_copy(update={
                "last_updated_at": self._now_iso(),
                "version": RECORD_VERSION,
            })
            stored = await self.storage.set(keys.group_config(enriched.chat_id), enriched.to_storage())
            if stored:
                logger.info(
                    f"Group configuration stored for chat {enriched.chat_id} "
                    f"(configured={enriched.is_configured}, customer={enriched.customer_id})"
                )
            return stored
        except Exception as e:
            logger.error(f"Failed to store group configuration: {e}")
            return False

    async def get_group_config(self, chat_id: int) -> Optional[GroupConfig]:
        try:
            config = await self._read(GroupConfig, keys.group_config(chat_id))
            if config is None:
                logger.debug(f"No group configuration found for chat {chat_id}")
            return config
        except Exception as e:
            logger.error(f"Failed to retrieve group configuration for chat {chat_id}: {e}")
            return None

    async def update_group_config(self, chat_id: int, updates: Mapping[str, Any]) -> bool:
        """Partial update; ``chat_id`` never changes and ``customer_id`` only while unset."""
        try:
            existing = await self.get_group_config(chat_id)
            if existing is None:
                logger.warning(f"Cannot update non-existent group configuration for chat {chat_id}")
                return False

            safe = exclude_immutable_fields(
                GroupConfig, updates, existing,
                immutable=("chat_id",),
                once_set=("customer_id",),
                context=f"group config {chat_id}",
            )
            return await self.store_group_config(self._merge(GroupConfig, existing, safe))
        except Exception as e:
            logger.error(f"Failed to update group configuration for chat {chat_id}: {e}")
            return False

    async def delete_group_config(self, chat_id: int) -> bool:
        try:
            deleted = await self.storage.delete(keys.group_config(chat_id))
            logger.info(f"Group configuration deleted for chat {chat_id}")
            return deleted
        except Exception as e:
            logger.error(f"Failed to delete group configuration for chat {chat_id}: {e}")
            return False

    async def store_group_configs(self, configs: Iterable[RecordInput]) -> bool:
        results = await asyncio.gather(*(self.store_group_config(c) for c in configs))
        return all(results)

    async def get_group_configs(self, chat_ids: Iterable[int]) -> List[Optional[GroupConfig]]:
        return list(await asyncio.gather(*(self.get_group_config(c) for c in chat_ids)))

    async def update_group_configs(self, updates: Mapping[int, Mapping[str, Any]]) -> bool:
        results = await asyncio.gather(
            *(self.update_group_config(chat_id, u) for chat_id, u in updates.items())
        )
        return all(results)

    async def delete_group_configs(self, chat_ids: Iterable[int]) -> bool:
        results = await asyncio.gather(*(self.delete_group_config(c) for c in chat_ids))
        return all(results)

    # ------------------------------------------------------------------
    # Setup state
    # ------------------------------------------------------------------

    async def store_setup_state(self, state: RecordInput) -> bool:
        try:
            state = self._coerce(SetupState, state)
            enriched = state.model_copy(update={
                "last_updated_at": self._now_iso(),
                "version": RECORD_VERSION,
            })
            stored = await self.storage.set(
                keys.setup_state(enriched.chat_id), enriched.to_storage(), SETUP_STATE_TTL
            )
            if stored:
                logger.info(
                    f"Setup state stored for chat {enriched.chat_id} "
                    f"(step={enriched.step.value}, initiated by {enriched.initiated_by})"
                )
            return stored
        except Exception as e:
            logger.error(f"Failed to store setup state: {e}")
            return False

    async def get_setup_state(self, chat_id: int) -> Optional[SetupState]:
        try:
            state = await self._read(SetupState, keys.setup_state(chat_id))
            if state is None:
                logger.debug(f"No setup state found for chat {chat_id}")
            return state
        except Exception as e:
            logger.error(f"Failed to retrieve setup state for chat {chat_id}: {e}")
            return None

    async def update_setup_state(self, chat_id: int, updates: Mapping[str, Any]) -> bool:
        try:
            existing = await self.get_setup_state(chat_id)
            if existing is None:
                logger.warning(f"Cannot update non-existent setup state for chat {chat_id}")
                return False

            safe = exclude_immutable_fields(
                SetupState, updates, existing,
                immutable=("chat_id",),
                context=f"setup state {chat_id}",
            )
            return await self.store_setup_state(self._merge(SetupState, existing, safe))
        except Exception as e:
            logger.error(f"Failed to update setup state for chat {chat_id}: {e}")
            return False

    async def clear_setup_state(self, chat_id: int) -> bool:
        try:
            cleared = await self.storage.delete(keys.setup_state(chat_id))
            logger.info(f"Setup state cleared for chat {chat_id}")
            return cleared
        except Exception as e:
            logger.error(f"Failed to clear setup state for chat {chat_id}: {e}")
            return False

    async def store_setup_states(self, states: Iterable[RecordInput]) -> bool:
        results = await asyncio.gather(*(self.store_setup_state(s) for s in states))
        return all(results)

    async def get_setup_states(self, chat_ids: Iterable[int]) -> List[Optional[SetupState]]:
        return list(await asyncio.gather(*(self.get_setup_state(c) for c in chat_ids)))

    async def update_setup_states(self, updates: Mapping[int, Mapping[str, Any]]) -> bool:
        results = await asyncio.gather(
            *(self.update_setup_state(chat_id, u) for chat_id, u in updates.items())
        )
        return all(results)

    async def clear_setup_states(self, chat_ids: Iterable[int]) -> bool:
        results = await asyncio.gather(*(self.clear_setup_state(c) for c in chat_ids))
        return all(results)

    # ------------------------------------------------------------------
    # Global configuration
    # ------------------------------------------------------------------

    async def get_global_config(self, name: str) -> Any:
        try:
            value = await self._read_scalar(keys.global_config(name))
            if value is None:
                logger.debug(f"No global configuration found for {name}")
            return value
        except Exception as e:
            logger.error(f"Failed to get global configuration {name}: {e}")
            return None

    async def set_global_config(self, name: str, value: Any) -> bool:
        try:
            stored = await self.storage.set(keys.global_config(name), value)
            if stored:
                logger.info(f"Global configuration saved: {name}")
            return stored
        except Exception as e:
            logger.error(f"Failed to set global configuration {name}: {e}")
            return False

    async def delete_global_config(self, name: str) -> bool:
        try:
            deleted = await self.storage.delete(keys.global_config(name))
            logger.info(f"Global configuration deleted: {name}")
            return deleted
        except Exception as e:
            logger.error(f"Failed to delete global configuration {name}: {e}")
            return False

    # ------------------------------------------------------------------
    # Admin profiles
    # ------------------------------------------------------------------

    async def store_admin_profile(self, profile: RecordInput) -> bool:
        """Store a non-expiring admin profile and track its id in the admin list."""
        try:
            profile = self._coerce(AdminProfile, profile)
            admin_id = profile.telegram_user_id
            enriched = profile.model_copy(update={
                "platform": PLATFORM,
                "type": "admin_profile",
                "stored_at": self._now_iso(),
                "version": RECORD_VERSION,
            })
            if not await self.storage.set(keys.admin_profile(admin_id), enriched.to_storage(), NO_EXPIRY):
                return False

            def add(ids: List[Any]) -> Optional[List[Any]]:
                return None if admin_id in ids else ids + [admin_id]

            listed = await self._update_list(keys.ADMIN_PROFILE_IDS, add, NO_EXPIRY)
            logger.info(f"Admin profile stored: {admin_id}")
            return listed
        except Exception as e:
            logger.error(f"Failed to store admin profile: {e}")
            return False

    async def get_admin_profile(self, admin_id: int) -> Optional[AdminProfile]:
        try:
            return await self._read(AdminProfile, keys.admin_profile(admin_id))
        except Exception as e:
            logger.error(f"Failed to get admin profile {admin_id}: {e}")
            return None

    async def update_admin_profile(self, admin_id: int, updates: Mapping[str, Any]) -> bool:
        try:
            existing = await self.get_admin_profile(admin_id)
            if existing is None:
                return False

            safe = exclude_immutable_fields(
                AdminProfile, updates, existing,
                immutable=("telegram_user_id",),
                context=f"admin profile {admin_id}",
            )
            updated = self._merge(AdminProfile, existing, safe, last_active_at=self._now_iso())
            return await self.store_admin_profile(updated)
        except Exception as e:
            logger.error(f"Failed to update admin profile {admin_id}: {e}")
            return False

    async def delete_admin_profile(self, admin_id: int) -> bool:
        try:
            await self.storage.delete(keys.admin_profile(admin_id))

            def remove(ids: List[Any]) -> Optional[List[Any]]:
                return [i for i in ids if i != admin_id] if admin_id in ids else None

            listed = await self._update_list(keys.ADMIN_PROFILE_IDS, remove, NO_EXPIRY)
            logger.info(f"Admin profile deleted: {admin_id}")
            return listed
        except Exception as e:
            logger.error(f"Failed to delete admin profile {admin_id}: {e}")
            return False

    async def get_all_admin_profiles(self) -> List[AdminProfile]:
        """Every listed admin whose profile still exists, in list order."""
        try:
            admin_ids = await self._read_list(keys.ADMIN_PROFILE_IDS)
            profiles = await asyncio.gather(*(self.get_admin_profile(i) for i in admin_ids))
            return [p for p in profiles if p is not None]
        except Exception as e:
            logger.error(f"Failed to get all admin profiles: {e}")
            return []

    # ------------------------------------------------------------------
    # Setup sessions
    # ------------------------------------------------------------------

    async def store_setup_session(self, session: RecordInput) -> bool:
        """Store a session with its admin and group reverse keys, all expiring together."""
        try:
            session = self._coerce(SetupSession, session)
            enriched = session.model_copy(update={
                "platform": PLATFORM,
                "type": "setup_session",
                "stored_at": self._now_iso(),
                "version": RECORD_VERSION,
            })

            items = {
                keys.setup_session(enriched.session_id): enriched.to_storage(),
                keys.setup_session_by_admin(enriched.initiating_admin_id): enriched.session_id,
            }
            if enriched.group_chat_id:
                items[keys.setup_session_by_group(enriched.group_chat_id)] = enriched.session_id

            fan_out = await self.storage.set_many(items, SETUP_SESSION_TTL)
            if not fan_out.ok:
                logger.error(
                    f"Setup session {enriched.session_id} partially stored "
                    f"(failed keys: {fan_out.failed_keys})"
                )
                return False

            logger.info(f"Setup session stored: {enriched.session_id}")
            return True
        except Exception as e:
            logger.error(f"Failed to store setup session: {e}")
            return False

    async def get_setup_session(self, session_id: str) -> Optional[SetupSession]:
        try:
            return await self._read(SetupSession, keys.setup_session(session_id))
        except Exception as e:
            logger.error(f"Failed to get setup session {session_id}: {e}")
            return None

    async def get_active_setup_session_by_admin(self, admin_id: int) -> Optional[SetupSession]:
        return await self._setup_session_via(keys.setup_session_by_admin(admin_id))

    async def get_active_setup_session_by_group(self, group_chat_id: int) -> Optional[SetupSession]:
        return await self._setup_session_via(keys.setup_session_by_group(group_chat_id))

    async def _setup_session_via(self, pointer_key: str) -> Optional[SetupSession]:
        try:
            session_id = await self._read_scalar(pointer_key)
            if not session_id:
                return None
            return await self.get_setup_session(str(session_id))
        except Exception as e:
            logger.error(f"Failed to resolve setup session via {pointer_key}: {e}")
            return None

    async def update_setup_session(self, session_id: str, updates: Mapping[str, Any]) -> bool:
        try:
            existing = await self.get_setup_session(session_id)
            if existing is None:
                return False

            safe = exclude_immutable_fields(
                SetupSession, updates, existing,
                immutable=("session_id",),
                once_set=("initiating_admin_id", "group_chat_id"),
                context=f"setup session {session_id}",
            )
            return await self.store_setup_session(self._merge(SetupSession, existing, safe))
        except Exception as e:
            logger.error(f"Failed to update setup session {session_id}: {e}")
            return False

    async def delete_setup_session(self, session_id: str) -> bool:
        """Delete a session and every reverse key that still points at it."""
        try:
            session = await self.get_setup_session(session_id)
            session_keys = [keys.setup_session(session_id)]
            if session is not None:
                pointers = [keys.setup_session_by_admin(session.initiating_admin_id)]
                if session.group_chat_id:
                    pointers.append(keys.setup_session_by_group(session.group_chat_id))
                session_keys += await self._pointers_to(session_id, pointers)

            fan_out = await self.storage.delete_many(session_keys)
            logger.info(f"Setup session deleted: {session_id}")
            return fan_out.ok
        except Exception as e:
            logger.error(f"Failed to delete setup session {session_id}: {e}")
            return False

    async def _pointers_to(self, session_id: str, pointer_keys: List[str]) -> List[str]:
        targets = await asyncio.gather(*(self._read_scalar(k) for k in pointer_keys))
        return [k for k, target in zip(pointer_keys, targets) if str(target) == session_id]

    async def cleanup_expired_sessions(self) -> int:
        """Sweep expired entries from memory and the database; Redis expires on its own."""
        try:
            removed = await self.storage.purge_expired()
            logger.debug(f"Session cleanup removed {removed} expired entries")
            return removed
        except Exception as e:
            logger.error(f"Failed to cleanup expired sessions: {e}")
            return 0

    # ------------------------------------------------------------------
    # DM setup sessions
    # ------------------------------------------------------------------

    async def store_dm_setup_session(self, session: RecordInput) -> bool:
        """
        Store a DM session with a TTL derived from its ``expires_at``.

        The TTL never drops below DM_SESSION_MIN_TTL; a session at or under
        that floor is extended to DM_SESSION_EXTENSION from now and the
        extended expiry is what gets stored.
        """
        try:
            session = self._coerce(DmSetupSession, session)
            now = self._clock()
            expires_at = _parse_iso(session.expires_at)
            remaining = math.floor(expires_at - now) if expires_at is not None else 0
            ttl = max(DM_SESSION_MIN_TTL, remaining)
            logger.debug(
                f"DM session {session.session_id} ttl={ttl}s "
                f"(expires_at={session.expires_at}, min={DM_SESSION_MIN_TTL}s)"
            )

            if ttl <= DM_SESSION_MIN_TTL:
                extended = _iso(now + DM_SESSION_EXTENSION)
                logger.warning(
                    f"DM session {session.session_id} expiry too short "
                    f"({session.expires_at}), extending to {extended}"
                )
                session = session.model_copy(update={"expires_at": extended})
                ttl = DM_SESSION_EXTENSION

            fan_out = await self.storage.set_many({
                keys.dm_session(session.session_id): session.to_storage(),
                keys.dm_session_by_admin(session.admin_id): session.session_id,
            }, ttl)
            if not fan_out.ok:
                logger.error(
                    f"DM session {session.session_id} partially stored "
                    f"(failed keys: {fan_out.failed_keys})"
                )
                return False

            logger.info(
                f"DM setup session stored: {session.session_id} "
                f"(admin={session.admin_id}, step={session.current_step}, ttl={ttl}s)"
            )
            return True
        except Exception as e:
            logger.error(f"Failed to store DM setup session: {e}")
            return False

    async def get_dm_setup_session(self, session_id: str) -> Optional[DmSetupSession]:
        try:
            return await self._read(DmSetupSession, keys.dm_session(session_id))
        except Exception as e:
            logger.error(f"Failed to get DM setup session {session_id}: {e}")
            return None

    async def get_active_dm_setup_session_by_admin(self, admin_id: int) -> Optional[DmSetupSession]:
        try:
            session_id = await self._read_scalar(keys.dm_session_by_admin(admin_id))
            if not session_id:
                return None
            return await self.get_dm_setup_session(str(session_id))
        except Exception as e:
            logger.error(f"Failed to get active DM setup session for admin {admin_id}: {e}")
            return None

    async def update_dm_setup_session(self, session_id: str, updates: Mapping[str, Any]) -> bool:
        try:
            existing = await self.get_dm_setup_session(session_id)
            if existing is None:
                return False

            safe = exclude_immutable_fields(
                DmSetupSession, updates, existing,
                immutable=("session_id", "admin_id"),
                context=f"DM session {session_id}",
            )
            return await self.store_dm_setup_session(self._merge(DmSetupSession, existing, safe))
        except Exception as e:
            logger.error(f"Failed to update DM setup session {session_id}: {e}")
            return False

    async def delete_dm_setup_session(self, session_id: str) -> bool:
        try:
            session = await self.get_dm_setup_session(session_id)
            session_keys = [keys.dm_session(session_id)]
            if session is not None:
                session_keys += await self._pointers_to(
                    session_id, [keys.dm_session_by_admin(session.admin_id)]
                )

            fan_out = await self.storage.delete_many(session_keys)
            logger.info(f"DM setup session deleted: {session_id}")
            return fan_out.ok
        except Exception as e:
            logger.error(f"Failed to delete DM setup session {session_id}: {e}")
            return False

    async def cleanup_expired_dm_sessions(self) -> int:
        try:
            removed = await self.storage.purge_expired()
            logger.debug(f"DM session cleanup removed {removed} expired entries")
            return removed
        except Exception as e:
            logger.error(f"Failed to cleanup expired DM sessions: {e}")
            return 0

    # ------------------------------------------------------------------
    # Message templates
    # ------------------------------------------------------------------

    @staticmethod
    def generate_template_id(template_type: str, group_chat_id: int) -> str:
        """Generate a unique template ID."""
        return f"tpl_{template_type}_{group_chat_id}_{uuid.uuid4().hex[:12]}"

    async def save_message_template(self, template: RecordInput) -> bool:
        """Store a template; saving a default clears the other defaults of its type."""
        try:
            template = self._coerce(MessageTemplate, template)
            if template.is_default:
                await self._unset_default_templates(
                    template.group_chat_id, template.template_type, keep_id=template.id
                )
            if not await self._write_template(template):
                return False
            logger.info(f"Message template saved: {template.id} ({template.template_type})")
            return True
        except Exception as e:
            logger.error(f"Failed to save message template: {e}")
            return False

    async def _write_template(self, template: MessageTemplate) -> bool:
        stored = await self.storage.set(
            keys.message_template(template.group_chat_id, template.id), template.to_storage()
        )
        if not stored:
            return False

        def add(ids: List[Any]) -> Optional[List[Any]]:
            return None if template.id in ids else ids + [template.id]

        return await self._update_list(keys.message_template_index(template.group_chat_id), add)

    async def get_message_template(self, group_chat_id: int, template_id: str) -> Optional[MessageTemplate]:
        try:
            return await self._read(MessageTemplate, keys.message_template(group_chat_id, template_id))
        except Exception as e:
            logger.error(f"Failed to get message template {template_id}: {e}")
            return None

    async def get_message_templates(self, group_chat_id: int) -> List[MessageTemplate]:
        """Every template of a group, skipping index entries that no longer resolve."""
        try:
            template_ids = await self._read_list(keys.message_template_index(group_chat_id))
            templates = await asyncio.gather(
                *(self.get_message_template(group_chat_id, t) for t in template_ids)
            )
            return [t for t in templates if t is not None]
        except Exception as e:
            logger.error(f"Failed to get message templates for group {group_chat_id}: {e}")
            return []

    async def get_message_templates_by_type(
        self,
        group_chat_id: int,
        template_type: str,
    ) -> List[MessageTemplate]:
        templates = await self.get_message_templates(group_chat_id)
        return [t for t in templates if t.template_type == template_type]

    async def get_default_template(self, group_chat_id: int, template_type: str) -> Optional[MessageTemplate]:
        for template in await self.get_message_templates_by_type(group_chat_id, template_type):
            if template.is_default and template.is_active:
                return template
        return None

    async def update_message_template(
        self,
        group_chat_id: int,
        template_id: str,
        updates: Mapping[str, Any],
        modified_by: Optional[int] = None,
    ) -> Optional[MessageTemplate]:
        """
        Apply a partial update, bumping ``version``.

        Returns:
            The updated template, or None if it does not exist or the write failed
        """
        try:
            existing = await self.get_message_template(group_chat_id, template_id)
            if existing is None:
                return None

            safe = exclude_immutable_fields(
                MessageTemplate, updates, existing,
                immutable=("id", "group_chat_id", "template_type", "created_by", "created_at"),
                context=f"template {template_id}",
            )
            if safe.get("is_default") and not existing.is_default:
                await self._unset_default_templates(
                    group_chat_id, existing.template_type, keep_id=template_id
                )

            stamps = {
                "version": existing.version + 1,
                "last_modified_at": self._now_iso(),
            }
            if modified_by is not None:
                stamps["last_modified_by"] = modified_by
            updated = self._merge(MessageTemplate, existing, safe, **stamps)

            if not await self._write_template(updated):
                return None
            logger.info(f"Message template updated: {template_id} (v{updated.version})")
            return updated
        except Exception as e:
            logger.error(f"Failed to update message template {template_id}: {e}")
            return None

    async def set_default_template(self, group_chat_id: int, template_type: str, template_id: str) -> bool:
        template = await self.get_message_template(group_chat_id, template_id)
        if template is None or template.template_type != template_type:
            return False
        if template.is_default:
            return True
        return await self.update_message_template(group_chat_id, template_id, {"is_default": True}) is not None

    async def _unset_default_templates(self, group_chat_id: int, template_type: str, keep_id: str) -> None:
        for template in await self.get_message_templates_by_type(group_chat_id, template_type):
            if template.is_default and template.id != keep_id:
                await self.update_message_template(group_chat_id, template.id, {"is_default": False})

    async def delete_message_template(self, group_chat_id: int, template_id: str) -> bool:
        try:
            await self.storage.delete(keys.message_template(group_chat_id, template_id))

            def remove(ids: List[Any]) -> Optional[List[Any]]:
                return [i for i in ids if i != template_id] if template_id in ids else None

            indexed = await self._update_list(keys.message_template_index(group_chat_id), remove)
            logger.info(f"Message template deleted: {template_id}")
            return indexed
        except Exception as e:
            logger.error(f"Failed to delete message template {template_id}: {e}")
            return False


def _index_conversation_id(entry: Any) -> Optional[str]:
    if isinstance(entry, Mapping):
        return entry.get("conversationId") or entry.get("conversation_id")
    return None
