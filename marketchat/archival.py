"""Read -> archive -> purge lifecycle for received messages.

A received message moves through four states when its receiver opens the
conversation::

    DELIVERED -> VIEWED -> ARCHIVED -> PURGED

The remote row is only deleted for messages held in an
:class:`ArchivedBatch`, and the only way to obtain one is :func:`archive`,
which returns just the messages the local store accepted.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from typing import Iterable, Optional

from .errors import InvalidTransition, RemoteServiceError
from .gateway import RemoteMessageGateway
from .models import Message
from .storage import LocalMessageStore

logger = logging.getLogger(__name__)


class MessageState(enum.Enum):
    DELIVERED = "delivered"
    VIEWED = "viewed"
    ARCHIVED = "archived"
    PURGED = "purged"


_TRANSITIONS = {
    MessageState.DELIVERED: frozenset({MessageState.VIEWED}),
    MessageState.VIEWED: frozenset({MessageState.ARCHIVED}),
    MessageState.ARCHIVED: frozenset({MessageState.PURGED}),
    MessageState.PURGED: frozenset(),
}


def advance(current: MessageState, target: MessageState) -> MessageState:
    """Return ``target`` if the move from ``current`` is allowed."""

    if target not in _TRANSITIONS[current]:
        raise InvalidTransition(current, target)
    return target


def initial_state(message: Message) -> MessageState:
    """State of a message still present in the remote tier."""

    return MessageState.VIEWED if message.is_read else MessageState.DELIVERED


@dataclass(frozen=True)
class ViewedBatch:
    partner_id: str
    messages: tuple[Message, ...] = ()


@dataclass(frozen=True)
class ArchivedBatch:
    partner_id: str
    messages: tuple[Message, ...] = ()

    @property
    def ids(self) -> list[str]:
        return [message.id for message in self.messages]


@dataclass
class ArchivalReport:
    """Outcome of one archival run over a conversation."""

    partner_id: str
    states: dict[str, MessageState] = field(default_factory=dict)
    messages: list[Message] = field(default_factory=list)
    mark_read_error: Optional[RemoteServiceError] = None


def receivable(messages: Iterable[Message], viewer_id: str, partner_id: str) -> list[Message]:
    """Remote messages sent by ``partner_id`` to ``viewer_id``."""

    return [
        message
        for message in messages
        if message.receiver_id == viewer_id and message.sender_id == partner_id
    ]


async def mark_viewed(
    gateway: RemoteMessageGateway,
    partner_id: str,
    messages: Iterable[Message],
    states: dict[str, MessageState],
) -> ViewedBatch:
    """Mark every unread message read remotely in a single batch.

    Messages already read remotely are part of the batch without another
    update. If the update fails the unread ones stay ``DELIVERED`` in
    ``states`` and the :class:`RemoteServiceError` propagates.
    """

    messages = list(messages)
    unread = [message for message in messages if states[message.id] is MessageState.DELIVERED]
    if unread:
        await gateway.update_messages([message.id for message in unread], {"is_read": True})
        for message in unread:
            states[message.id] = advance(states[message.id], MessageState.VIEWED)

    return ViewedBatch(
        partner_id=partner_id,
        messages=tuple(
            message.as_read()
            for message in messages
            if states[message.id] is MessageState.VIEWED
        ),
    )


def archive(
    store: LocalMessageStore,
    viewed: ViewedBatch,
    states: dict[str, MessageState],
) -> ArchivedBatch:
    archived: list[Message] = []
    for message in viewed.messages:
        if store.append(viewed.partner_id, message):
            states[message.id] = advance(states[message.id], MessageState.ARCHIVED)
            archived.append(message)
        else:
            logger.warning(
                "Message %s was not archived, keeping it in the remote tier",
                message.id,
            )
    return ArchivedBatch(partner_id=viewed.partner_id, messages=tuple(archived))


async def purge(
    gateway: RemoteMessageGateway,
    archived: ArchivedBatch,
    states: dict[str, MessageState],
) -> list[str]:
    """Delete archived messages from the remote tier.

    Best effort: on failure the rows stay remote and get archived again
    (a no-op locally) the next time the conversation is opened.
    """

    if not isinstance(archived, ArchivedBatch):
        raise TypeError("purge() only accepts the ArchivedBatch returned by archive()")
    ids = archived.ids
    if not ids:
        return []
    try:
        await gateway.delete_messages(ids)
    except RemoteServiceError as exc:
        logger.info("Purge of %d archived message(s) deferred: %s", len(ids), exc)
        return []
    for message_id in ids:
        states[message_id] = advance(states[message_id], MessageState.PURGED)
    return ids


async def run_archival(
    gateway: RemoteMessageGateway,
    store: LocalMessageStore,
    viewer_id: str,
    partner_id: str,
    remote_messages: Iterable[Message],
) -> ArchivalReport:
    """Run view -> archive -> purge for the messages ``viewer_id`` received.

    ``report.messages`` holds the received messages with their read flag as
    it stands after the run.
    """

    candidates = receivable(remote_messages, viewer_id, partner_id)
    report = ArchivalReport(partner_id=partner_id)
    report.states = {message.id: initial_state(message) for message in candidates}
    if not candidates:
        return report

    try:
        viewed = await mark_viewed(gateway, partner_id, candidates, report.states)
    except RemoteServiceError as exc:
        logger.warning("Could not mark messages from %s as read: %s", partner_id, exc)
        report.mark_read_error = exc
        viewed = ViewedBatch(
            partner_id=partner_id,
            messages=tuple(
                message
                for message in candidates
                if report.states[message.id] is MessageState.VIEWED
            ),
        )

    archived = archive(store, viewed, report.states)
    await purge(gateway, archived, report.states)

    read_ids = {message.id for message in viewed.messages}
    report.messages = [
        message.as_read() if message.id in read_ids else message
        for message in candidates
    ]
    return report
