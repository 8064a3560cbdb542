from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from .aggregator import aggregate_conversations
from .archival import MessageState, run_archival
from .errors import RemoteServiceError
from .gateway import MessageFilter, RemoteMessageGateway
from .models import Conversation, Message, Notice, merge_messages
from .storage import LocalMessageStore

logger = logging.getLogger(__name__)

Notifier = Callable[[Notice], None]


class ChatService:
    """Chat operations exposed to the conversation list and detail views."""

    def __init__(
        self,
        gateway: RemoteMessageGateway,
        store: LocalMessageStore,
        notify: Optional[Notifier] = None,
    ) -> None:
        self._gateway = gateway
        self._store = store
        self._notify_callback = notify

    def _notify(self, title: str, description: str, variant: str = "default") -> None:
        notice = Notice(title=title, description=description, variant=variant)
        logger.info("%s: %s", title, description)
        if self._notify_callback is not None:
            self._notify_callback(notice)

    async def list_conversations(self, user_id: str) -> list[Conversation]:
        try:
            return await aggregate_conversations(self._gateway, self._store, user_id)
        except RemoteServiceError as exc:
            logger.error("Error fetching messages for %s: %s", user_id, exc)
            self._notify("Error", "Could not load your messages.", "destructive")
            raise

    async def open_conversation(self, user_id: str, partner_id: str) -> list[Message]:
        """Return the full history with ``partner_id`` and archive what was read.

        If the remote tier cannot be reached the local archive is returned
        on its own.
        """

        try:
            remote = await self._gateway.query_messages(
                MessageFilter(participant=user_id, partner=partner_id)
            )
        except RemoteServiceError as exc:
            logger.error("Error loading messages with %s: %s", partner_id, exc)
            self._notify("Error", "Could not load messages.", "destructive")
            local = self._store.get_all(partner_id)
            return merge_messages(message for message in local if message.involves(user_id))

        report = await run_archival(self._gateway, self._store, user_id, partner_id, remote)
        if report.mark_read_error is not None:
            self._notify("Error", "Could not mark messages as read.", "destructive")

        updated = {message.id: message for message in report.messages}
        remaining = [
            updated.get(message.id, message)
            for message in remote
            if report.states.get(message.id) is not MessageState.PURGED
        ]
        local = self._store.get_all(partner_id)
        return merge_messages(
            remaining,
            (message for message in local if message.involves(user_id)),
        )

    async def send_message(
        self,
        sender_id: str,
        receiver_id: str,
        body: str,
        listing_id: Optional[str] = None,
    ) -> Message:
        body = (body or "").strip()
        if not body:
            raise ValueError("Message content cannot be empty")

        row = {
            "sender_id": sender_id,
            "receiver_id": receiver_id,
            "message": body,
            "created_at": datetime.now(timezone.utc).isoformat(),
            "is_read": False,
            "listing_id": listing_id,
        }
        try:
            stored = await self._gateway.insert_message(row)
        except RemoteServiceError as exc:
            logger.error("Error sending message to %s: %s", receiver_id, exc)
            self._notify("Error", "Could not send message. Please try again.", "destructive")
            raise

        # the receiver purges the row once read, so keep the sender's own copy
        if not self._store.append(receiver_id, stored):
            logger.warning("Sent message %s has no local copy", stored.id)
        return stored

    def delete_conversation(self, partner_id: str) -> bool:
        """Forget the local archive for ``partner_id``."""

        return self._store.remove(partner_id)
