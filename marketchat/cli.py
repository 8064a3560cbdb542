"""Interactive command line client for marketplace chat."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from datetime import datetime
from typing import Optional, Sequence

from .config import Settings, load_settings
from .errors import CredentialsNotProvided, RemoteServiceError
from .gateway import SupabaseGateway
from .models import Conversation, Message, Notice
from .realtime import RealtimeListener
from .service import ChatService
from .storage import LocalMessageStore, SQLiteKeyValueStorage
from .view_helpers import (
    format_last_message_date,
    message_preview,
    parse_chat_route,
    parse_send_argument,
)

# Exit commands recognised by the CLI.
EXIT_COMMANDS = {"exit", "quit", "q"}
DEFAULT_WATCH_SECONDS = 60

HELP_TEXT = """Commands:
  list                                    show your conversations
  open <partner|#>                        show a conversation and archive what you read
  send <partner|#> [--listing <id>] <text>
  delete <partner|#>                      forget the local archive of a conversation
  watch [seconds]                         print incoming messages as they arrive
  exit | quit | q"""


def print_notice(notice: Notice) -> None:
    marker = "!" if notice.variant == "destructive" else "*"
    print(f"[{marker}] {notice.title}: {notice.description}")


def render_conversation_line(
    index: int, conversation: Conversation, now: Optional[datetime] = None
) -> str:
    line = f"{index}. {conversation.partner_name}"
    if conversation.unread_count:
        line += f" ({conversation.unread_count} unread)"
    last = conversation.last_message
    if last is not None:
        when = format_last_message_date(last.created_at, now)
        line += f" - {when}: {message_preview(last.body)}"
    if conversation.listing is not None:
        line += f" [{conversation.listing.name}, {conversation.listing.formatted_price}]"
    return line


def render_message(message: Message, user_id: str) -> str:
    author = "You" if message.sender_id == user_id else message.sender_id
    stamp = message.created_at.astimezone().strftime("%Y-%m-%d %H:%M")
    return f"[{stamp}] {author}: {message.body}"


def resolve_partner(selector: str, conversations: Sequence[Conversation] = ()) -> Optional[str]:
    """Map a list index (1-based) or a partner id/chat link to a partner id."""

    selector = selector.strip()
    if selector.isdigit() and conversations:
        index = int(selector)
        if 1 <= index <= len(conversations):
            return conversations[index - 1].partner_id
    partner_id, _ = parse_chat_route(selector)
    return partner_id


async def handle_list_command(service: ChatService, user_id: str) -> list[Conversation]:
    try:
        conversations = await service.list_conversations(user_id)
    except RemoteServiceError:
        return []

    if not conversations:
        print(
            "You don't have any messages yet. Start a conversation by viewing "
            "a vehicle listing and contacting the seller."
        )
    for index, conversation in enumerate(conversations, start=1):
        print(render_conversation_line(index, conversation))
    return conversations


async def handle_open_command(
    argument: str,
    service: ChatService,
    user_id: str,
    conversations: Sequence[Conversation] = (),
) -> list[Message]:
    partner_id = resolve_partner(argument, conversations)
    if not partner_id:
        print("Usage: open <partner_id|index>")
        return []

    messages = await service.open_conversation(user_id, partner_id)
    if not messages:
        print("No messages yet.")
    for message in messages:
        print(render_message(message, user_id))
    return messages


async def handle_send_command(
    argument: str,
    service: ChatService,
    user_id: str,
    conversations: Sequence[Conversation] = (),
) -> Optional[Message]:
    selector, listing_id, text = parse_send_argument(argument)
    partner_id = resolve_partner(selector or "", conversations)
    if not partner_id or not text:
        print("Usage: send <partner_id|index> [--listing <id>] <text>")
        return None
    if listing_id is None:
        listing_id = next(
            (c.listing_id for c in conversations if c.partner_id == partner_id),
            None,
        )

    try:
        message = await service.send_message(user_id, partner_id, text, listing_id)
    except RemoteServiceError:
        return None
    print(f"Message sent to {partner_id}.")
    return message


def handle_delete_command(
    argument: str,
    service: ChatService,
    conversations: Sequence[Conversation] = (),
) -> bool:
    partner_id = resolve_partner(argument, conversations)
    if not partner_id:
        print("Usage: delete <partner_id|index>")
        return False
    removed = service.delete_conversation(partner_id)
    if removed:
        print(f"Local history with {partner_id} deleted.")
    else:
        print(f"Could not delete local history with {partner_id}.")
    return removed


async def handle_watch_command(argument: str, settings: Settings, user_id: str) -> None:
    seconds = DEFAULT_WATCH_SECONDS
    if argument.strip():
        try:
            seconds = max(1, int(argument.strip()))
        except ValueError:
            print("Usage: watch [seconds]")
            return

    listener = RealtimeListener(settings.url, settings.api_key, settings.access_token)

    def on_message(message: Message) -> None:
        print(f"New message from {message.sender_id}: {message_preview(message.body)}")

    print(f"Watching for new messages for {seconds}s ...")
    try:
        await asyncio.wait_for(listener.listen(user_id, on_message), timeout=seconds)
    except asyncio.TimeoutError:
        pass
    except OSError as exc:
        print(f"Realtime connection failed: {exc}")


def obtain_user_id(settings: Settings) -> str:
    """Return the configured user id or ask for one."""

    if settings.user_id:
        return settings.user_id

    while True:
        try:
            user_id = input("Your user id: ").strip()
        except EOFError:
            print("\nInput stream closed. Exiting.")
            raise SystemExit(1) from None
        if user_id:
            return user_id
        print("A user id is required.\n")


async def run_session(settings: Settings, user_id: str) -> None:
    with SQLiteKeyValueStorage(settings.archive_path) as storage:
        async with SupabaseGateway(
            settings.url, settings.api_key, access_token=settings.access_token
        ) as gateway:
            service = ChatService(gateway, LocalMessageStore(storage), notify=print_notice)
            conversations: list[Conversation] = []

            print("\nConnected. Type 'help' for commands, 'exit' to leave.")
            while True:
                try:
                    raw = await asyncio.to_thread(input, "marketchat> ")
                except EOFError:
                    print("\nEOF received. Exiting.")
                    break

                stripped = raw.strip()
                command, _, argument = stripped.partition(" ")
                command = command.lower()

                if command in EXIT_COMMANDS:
                    print("Goodbye!")
                    break
                if not command:
                    continue

                try:
                    if command == "list":
                        conversations = await handle_list_command(service, user_id)
                    elif command == "open":
                        await handle_open_command(argument, service, user_id, conversations)
                    elif command == "send":
                        await handle_send_command(argument, service, user_id, conversations)
                    elif command == "delete":
                        handle_delete_command(argument, service, conversations)
                    elif command == "watch":
                        await handle_watch_command(argument, settings, user_id)
                    else:
                        print(HELP_TEXT)
                except Exception as exc:  # noqa: BLE001 - keep the session alive.
                    print(f"Encountered an error: {exc}")


def main(argv: Optional[Sequence[str]] = None) -> None:
    """Entry point for the interactive CLI."""

    parser = argparse.ArgumentParser(description="Chat with marketplace buyers and sellers.")
    parser.add_argument("--config", default="config.ini", help="Path to config.ini.")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging.")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    try:
        settings = load_settings(args.config)
    except CredentialsNotProvided as exc:
        print(exc)
        raise SystemExit(1) from None

    user_id = obtain_user_id(settings)
    asyncio.run(run_session(settings, user_id))


if __name__ == "__main__":
    try:
        main()
    except KeyboardInterrupt:
        print("\nInterrupted. Goodbye!")
        sys.exit(1)
