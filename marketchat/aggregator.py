"""Build per-partner conversation summaries from both storage tiers."""

from __future__ import annotations

import logging
from typing import Iterable, Mapping, Optional

from .errors import RemoteServiceError
from .gateway import MessageFilter, RemoteMessageGateway
from .models import Conversation, ListingSummary, Message, Profile, merge_messages
from .storage import LocalMessageStore

logger = logging.getLogger(__name__)


def local_messages_for(store: LocalMessageStore, user_id: str) -> list[Message]:
    """Every archived message on this device that involves ``user_id``."""

    collected: list[Message] = []
    for messages in store.get_all_conversations().values():
        collected.extend(message for message in messages if message.involves(user_id))
    return collected


def group_conversations(user_id: str, messages: Iterable[Message]) -> list[Conversation]:
    """Group deduplicated messages by the other participant.

    Conversations come back most recent first.
    """

    groups: dict[str, list[Message]] = {}
    for message in messages:
        groups.setdefault(message.partner_of(user_id), []).append(message)

    conversations: list[Conversation] = []
    for partner_id, grouped in groups.items():
        grouped.sort(key=lambda item: item.created_at)
        listing_id: Optional[str] = None
        for message in reversed(grouped):
            if message.listing_id:
                listing_id = message.listing_id
                break
        conversations.append(
            Conversation(
                partner_id=partner_id,
                messages=grouped,
                unread_count=sum(1 for message in grouped if message.is_unread_for(user_id)),
                last_message=grouped[-1],
                listing_id=listing_id,
            )
        )

    conversations.sort(key=lambda conversation: conversation.last_message.created_at, reverse=True)
    return conversations


async def _profiles_by_id(
    gateway: RemoteMessageGateway, partner_ids: list[str]
) -> Mapping[str, Profile]:
    if not partner_ids:
        return {}
    try:
        profiles = await gateway.lookup_profiles(partner_ids)
    except RemoteServiceError as exc:
        logger.warning("Error fetching profiles: %s", exc)
        return {}
    return {profile.id: profile for profile in profiles}


async def _listings_by_id(
    gateway: RemoteMessageGateway, listing_ids: list[str]
) -> Mapping[str, ListingSummary]:
    if not listing_ids:
        return {}
    try:
        listings = await gateway.lookup_listings(listing_ids)
    except RemoteServiceError as exc:
        logger.warning("Error fetching listings: %s", exc)
        return {}
    return {listing.id: listing for listing in listings}


async def enrich_conversations(
    gateway: RemoteMessageGateway, conversations: list[Conversation]
) -> list[Conversation]:
    """Attach partner profiles and listing summaries with one lookup each."""

    partner_ids = [conversation.partner_id for conversation in conversations]
    listing_ids = list(
        dict.fromkeys(
            conversation.listing_id
            for conversation in conversations
            if conversation.listing_id
        )
    )

    profiles = await _profiles_by_id(gateway, partner_ids)
    listings = await _listings_by_id(gateway, listing_ids)

    for conversation in conversations:
        conversation.partner_profile = profiles.get(conversation.partner_id)
        if conversation.listing_id:
            conversation.listing = listings.get(conversation.listing_id)
    return conversations


async def aggregate_conversations(
    gateway: RemoteMessageGateway,
    store: LocalMessageStore,
    user_id: str,
) -> list[Conversation]:
    """Return every conversation ``user_id`` has, most recent first.

    Raises:
        RemoteServiceError: If the remote messages cannot be fetched.
    """

    remote = await gateway.query_messages(MessageFilter(participant=user_id))
    local = local_messages_for(store, user_id)
    conversations = group_conversations(user_id, merge_messages(remote, local))
    return await enrich_conversations(gateway, conversations)
