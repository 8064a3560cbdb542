"""Utilities shared between the interactive CLI and automation scripts."""

from __future__ import annotations

import re
import shlex
from datetime import datetime, timezone
from typing import Optional, Tuple
from urllib.parse import parse_qs

PREVIEW_LENGTH = 60

_CHAT_ROUTE_RE = re.compile(r"(?:^|/)chat/([^/?#\s]+)/?(?:\?([^#\s]*))?")


def message_preview(text: Optional[str], max_length: int = PREVIEW_LENGTH) -> str:
    """Truncate ``text`` for the conversation list."""

    if not text:
        return ""
    if len(text) <= max_length:
        return text
    return text[:max_length] + "..."


def format_last_message_date(created_at: datetime, now: Optional[datetime] = None) -> str:
    """Short label for when the last message arrived.

    Same day gives the clock time, the day before gives ``Yesterday``,
    anything within a week the weekday, and older dates ``Mon D``.
    """

    if now is None:
        now = datetime.now(timezone.utc).astimezone()
    if created_at.tzinfo is None:
        created_at = created_at.replace(tzinfo=timezone.utc)
    if now.tzinfo is not None:
        created_at = created_at.astimezone(now.tzinfo)

    diff_days = (now - created_at).days
    if diff_days <= 0:
        return created_at.strftime("%H:%M")
    if diff_days == 1:
        return "Yesterday"
    if diff_days < 7:
        return created_at.strftime("%a")
    return f"{created_at.strftime('%b')} {created_at.day}"


def parse_chat_route(value: str) -> Tuple[Optional[str], Optional[str]]:
    """Extract ``(partner_id, listing_id)`` from a ``/chat/<id>?listingId=`` link.

    A bare identifier is returned as the partner id.
    """

    if not value:
        return None, None

    trimmed = value.strip().rstrip(",;:.!")
    match = _CHAT_ROUTE_RE.search(trimmed)
    if not match:
        if "/" in trimmed or "?" in trimmed or not trimmed:
            return None, None
        return trimmed, None

    listing_values = parse_qs(match.group(2) or "").get("listingId") or [None]
    return match.group(1), listing_values[0] or None


def parse_send_argument(argument: str) -> tuple[Optional[str], Optional[str], str]:
    """Split ``<partner> [--listing <id>] <text...>`` into its parts."""

    if not argument:
        return None, None, ""

    try:
        tokens = shlex.split(argument)
    except ValueError:
        tokens = argument.split()
    if not tokens:
        return None, None, ""

    partner_id, listing_id = parse_chat_route(tokens[0])
    text_tokens: list[str] = []
    i = 1
    while i < len(tokens):
        token = tokens[i]
        lowered = token.lower()
        if lowered == "--listing" and i + 1 < len(tokens):
            listing_id = tokens[i + 1]
            i += 2
            continue
        if lowered.startswith("--listing="):
            listing_id = token.split("=", 1)[1] or listing_id
            i += 1
            continue
        text_tokens.append(token)
        i += 1

    return partner_id, listing_id, " ".join(text_tokens).strip()
