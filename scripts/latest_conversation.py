#!/usr/bin/env python3
"""Print the most recently active conversation and its latest message."""

from __future__ import annotations

import argparse
import asyncio
from datetime import timezone
from typing import Optional

from marketchat.config import Settings, load_settings
from marketchat.errors import CredentialsNotProvided, RemoteServiceError
from marketchat.gateway import SupabaseGateway
from marketchat.models import Conversation
from marketchat.service import ChatService
from marketchat.storage import LocalMessageStore, SQLiteKeyValueStorage


async def _fetch_latest(settings: Settings, user_id: str) -> Optional[Conversation]:
    with SQLiteKeyValueStorage(settings.archive_path) as storage:
        async with SupabaseGateway(
            settings.url, settings.api_key, access_token=settings.access_token
        ) as gateway:
            service = ChatService(gateway, LocalMessageStore(storage))
            conversations = await service.list_conversations(user_id)
    return conversations[0] if conversations else None


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Fetch the most recent conversation and print its latest message."
    )
    parser.add_argument("--config", default="config.ini", help="Path to config.ini.")
    parser.add_argument(
        "--user-id",
        help="User to look up (defaults to [backend] user_id or MARKETCHAT_USER_ID).",
    )
    args = parser.parse_args()

    try:
        settings = load_settings(args.config)
    except CredentialsNotProvided as exc:
        print(exc)
        return 2

    user_id = args.user_id or settings.user_id
    if not user_id:
        print("No user id found. Provide --user-id or set [backend] user_id.")
        return 2

    try:
        latest = asyncio.run(_fetch_latest(settings, user_id))
    except RemoteServiceError as exc:
        print(f"Failed to fetch conversations: {exc}")
        return 1

    if latest is None or latest.last_message is None:
        print("No conversations found.")
        return 1

    last = latest.last_message
    print(f"Conversation with: {latest.partner_name} ({latest.partner_id})")
    if latest.listing is not None:
        print(f"Listing: {latest.listing.name} - {latest.listing.formatted_price}")
    print(f"Unread: {latest.unread_count}")
    print(f"Last updated (UTC): {last.created_at.astimezone(timezone.utc).isoformat()}")
    print(f"Last author: {'you' if last.sender_id == user_id else last.sender_id}")
    print("Last message:")
    print(last.body)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
