"""Message and conversation records shared by the remote and local tiers."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Iterable, Mapping, Optional

from .errors import MalformedMessageError

UNKNOWN_USER = "Unknown User"
UNNAMED_VEHICLE = "Unnamed Vehicle"
CONTACT_FOR_PRICE = "Contact for price"


class StorageTier(enum.Enum):
    """Where a message copy was read from. Never persisted."""

    REMOTE = "remote"
    LOCAL = "local"


def coerce_timestamp(value: Optional[object]) -> Optional[datetime]:
    """Turn an ISO-8601 string, epoch number or datetime into an aware datetime.

    Strings are only read as ISO-8601, never as epoch seconds.
    """

    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(float(value), tz=timezone.utc)
    if isinstance(value, str):
        trimmed = value.strip()
        if not trimmed:
            return None
        normalized = trimmed[:-1] + "+00:00" if trimmed.endswith("Z") else trimmed
        try:
            parsed = datetime.fromisoformat(normalized)
        except ValueError:
            return None
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed
    return None


def _identifier(row: Mapping[str, Any], key: str, required: bool = True) -> Optional[str]:
    value = row.get(key)
    if value is None or value == "":
        if required:
            raise MalformedMessageError(f"missing {key!r}", row)
        return None
    if isinstance(value, bool) or not isinstance(value, (str, int)):
        raise MalformedMessageError(f"{key!r} must be a string or integer", row)
    return str(value)


@dataclass(frozen=True)
class Message:
    """A single chat message, identical in both storage tiers."""

    id: str
    sender_id: str
    receiver_id: str
    body: str
    created_at: datetime
    is_read: bool = False
    listing_id: Optional[str] = None
    storage_tier: StorageTier = field(default=StorageTier.REMOTE, compare=False)

    @classmethod
    def from_row(
        cls,
        row: Mapping[str, Any],
        tier: StorageTier = StorageTier.REMOTE,
    ) -> "Message":
        """Validate a row from the backend or the local archive.

        Raises:
            MalformedMessageError: If a required field is missing or has the
                wrong type.
        """

        if not isinstance(row, Mapping):
            raise MalformedMessageError("row is not a mapping", row)

        body = row.get("message")
        if not isinstance(body, str):
            raise MalformedMessageError("'message' must be a string", row)

        created_at = coerce_timestamp(row.get("created_at"))
        if created_at is None:
            raise MalformedMessageError("'created_at' is missing or unparseable", row)

        is_read = row.get("is_read")
        if is_read is None:
            is_read = False
        elif not isinstance(is_read, bool):
            raise MalformedMessageError("'is_read' must be a boolean", row)

        return cls(
            id=_identifier(row, "id"),
            sender_id=_identifier(row, "sender_id"),
            receiver_id=_identifier(row, "receiver_id"),
            body=body,
            created_at=created_at,
            is_read=is_read,
            listing_id=_identifier(row, "listing_id", required=False),
            storage_tier=tier,
        )

    def to_row(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "sender_id": self.sender_id,
            "receiver_id": self.receiver_id,
            "message": self.body,
            "created_at": self.created_at.isoformat(),
            "is_read": self.is_read,
            "listing_id": self.listing_id,
        }

    def involves(self, user_id: str) -> bool:
        return user_id in (self.sender_id, self.receiver_id)

    def partner_of(self, user_id: str) -> str:
        """Return the participant that is not ``user_id``."""

        return self.receiver_id if self.sender_id == user_id else self.sender_id

    def is_unread_for(self, user_id: str) -> bool:
        return self.receiver_id == user_id and not self.is_read

    def as_read(self) -> "Message":
        return replace(self, is_read=True)

    def in_tier(self, tier: StorageTier) -> "Message":
        return replace(self, storage_tier=tier)


def merge_messages(*sources: Iterable[Message]) -> list[Message]:
    """Union message sources, dedupe by ``id`` and sort by ``created_at``.

    The first copy of an id wins, so pass the remote tier first. The read
    flag only ever moves forward, so a later copy that is read marks the
    kept copy read as well.
    """

    merged: dict[str, Message] = {}
    for source in sources:
        for message in source:
            existing = merged.get(message.id)
            if existing is None:
                merged[message.id] = message
            elif message.is_read and not existing.is_read:
                merged[message.id] = existing.as_read()
    return sorted(merged.values(), key=lambda item: item.created_at)


@dataclass(frozen=True)
class Profile:
    id: str
    full_name: Optional[str] = None
    avatar_url: Optional[str] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Profile":
        return cls(
            id=str(row.get("id")),
            full_name=row.get("full_name") or None,
            avatar_url=row.get("avatar_url") or None,
        )

    @property
    def display_name(self) -> str:
        return self.full_name or UNKNOWN_USER


def _format_price(price: Any) -> str:
    try:
        amount = float(price)
    except (TypeError, ValueError):
        return CONTACT_FOR_PRICE
    if not amount:
        return CONTACT_FOR_PRICE
    if amount.is_integer():
        return f"${int(amount):,}"
    return "$" + f"{amount:,.2f}".rstrip("0").rstrip(".")


@dataclass(frozen=True)
class ListingSummary:
    """The subset of a marketplace listing shown next to a conversation."""

    id: str
    make: Optional[str] = None
    model: Optional[str] = None
    year: Optional[int] = None
    price: Optional[float] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "ListingSummary":
        return cls(
            id=str(row.get("id")),
            make=row.get("make"),
            model=row.get("model"),
            year=row.get("year"),
            price=row.get("price"),
        )

    @property
    def name(self) -> str:
        parts = [str(part) for part in (self.make, self.model, self.year) if part]
        return " ".join(parts).strip() or UNNAMED_VEHICLE

    @property
    def formatted_price(self) -> str:
        return _format_price(self.price)


@dataclass
class Conversation:
    """Derived view of all messages exchanged with one partner."""

    partner_id: str
    messages: list[Message] = field(default_factory=list)
    unread_count: int = 0
    last_message: Optional[Message] = None
    listing_id: Optional[str] = None
    partner_profile: Optional[Profile] = None
    listing: Optional[ListingSummary] = None

    @property
    def partner_name(self) -> str:
        if self.partner_profile is None:
            return UNKNOWN_USER
        return self.partner_profile.display_name

    @property
    def partner_initial(self) -> str:
        if self.partner_profile is not None and self.partner_profile.full_name:
            return self.partner_profile.full_name[0]
        return "U"


@dataclass(frozen=True)
class Notice:
    """A non-fatal, user-facing notification."""

    title: str
    description: str
    variant: str = "default"
