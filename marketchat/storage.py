"""Device-local archive for chat messages that have been read."""

from __future__ import annotations

import abc
import json
import logging
import sqlite3
import time
from collections.abc import Mapping
from pathlib import Path
from typing import Iterable, Iterator, Optional

from .errors import MalformedMessageError
from .models import Message, StorageTier

logger = logging.getLogger(__name__)

DEFAULT_DB_PATH = Path.home() / ".marketchat_archive.sqlite3"
KEY_PREFIX = "chat_messages_"
FORMAT_VERSION = 1


class KeyValueStorage(abc.ABC):
    """String key/value storage the local archive is written to."""

    @abc.abstractmethod
    def get(self, key: str) -> Optional[str]:
        ...

    @abc.abstractmethod
    def set(self, key: str, value: str) -> None:
        ...

    @abc.abstractmethod
    def delete(self, key: str) -> None:
        ...

    @abc.abstractmethod
    def keys(self) -> Iterable[str]:
        ...


class MemoryKeyValueStorage(KeyValueStorage):
    def __init__(self, initial: Optional[dict[str, str]] = None) -> None:
        self.data: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self.data.get(key)

    def set(self, key: str, value: str) -> None:
        self.data[key] = value

    def delete(self, key: str) -> None:
        self.data.pop(key, None)

    def keys(self) -> Iterable[str]:
        return list(self.data)


class SQLiteKeyValueStorage(KeyValueStorage):
    """Persist archive records as rows of a SQLite table."""

    def __init__(self, db_path: Path | str = DEFAULT_DB_PATH) -> None:
        self.db_path = Path(db_path).expanduser()
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._connection = sqlite3.connect(self.db_path)
        self._connection.execute("PRAGMA journal_mode=WAL;")
        self._initialise_schema()

    def __enter__(self) -> "SQLiteKeyValueStorage":
        return self

    def __exit__(self, exc_type, exc, traceback) -> None:
        self.close()

    def close(self) -> None:
        """Close the underlying SQLite connection."""

        self._connection.close()

    def _initialise_schema(self) -> None:
        with self._connection:
            self._connection.execute(
                """
                CREATE TABLE IF NOT EXISTS local_records (
                    record_key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_at REAL NOT NULL DEFAULT 0
                )
                """
            )

    def get(self, key: str) -> Optional[str]:
        cursor = self._connection.execute(
            "SELECT value FROM local_records WHERE record_key = ?",
            (key,),
        )
        row = cursor.fetchone()
        return str(row[0]) if row else None

    def set(self, key: str, value: str) -> None:
        with self._connection:
            self._connection.execute(
                """
                INSERT INTO local_records (record_key, value, updated_at)
                VALUES (?, ?, ?)
                ON CONFLICT(record_key) DO UPDATE SET
                    value = excluded.value,
                    updated_at = excluded.updated_at
                """,
                (key, value, time.time()),
            )

    def delete(self, key: str) -> None:
        with self._connection:
            self._connection.execute(
                "DELETE FROM local_records WHERE record_key = ?",
                (key,),
            )

    def keys(self) -> Iterable[str]:
        cursor = self._connection.execute(
            "SELECT record_key FROM local_records ORDER BY record_key"
        )
        return [str(row[0]) for row in cursor.fetchall()]


class ArchiveFormatError(Exception):
    """A stored record could not be decoded."""


def decode_record(raw: str) -> list[Message]:
    """Decode a stored record into messages sorted by ``created_at``.

    Version 1 records are ``{"version": 1, "messages": [...]}``. A bare JSON
    array is the unversioned layout and is still accepted. Malformed rows
    are skipped; anything else raises :class:`ArchiveFormatError`.
    """

    try:
        payload = json.loads(raw)
    except (TypeError, ValueError) as exc:
        raise ArchiveFormatError(f"unparseable record: {exc}") from exc

    if isinstance(payload, list):
        rows = payload
    elif isinstance(payload, dict):
        version = payload.get("version")
        if version != FORMAT_VERSION:
            raise ArchiveFormatError(f"unsupported record version {version!r}")
        rows = payload.get("messages")
        if not isinstance(rows, list):
            raise ArchiveFormatError("record has no message list")
    else:
        raise ArchiveFormatError(f"unexpected record type {type(payload).__name__}")

    messages: list[Message] = []
    for row in rows:
        try:
            messages.append(Message.from_row(row, tier=StorageTier.LOCAL))
        except MalformedMessageError as exc:
            logger.warning("Skipping archived message: %s", exc)
    messages.sort(key=lambda item: item.created_at)
    return messages


def encode_record(messages: Iterable[Message]) -> str:
    return json.dumps(
        {
            "version": FORMAT_VERSION,
            "messages": [message.to_row() for message in messages],
        },
        ensure_ascii=False,
    )


class ArchivedConversations(Mapping):
    """Read-only view of every archived conversation, loaded on access."""

    def __init__(self, store: "LocalMessageStore") -> None:
        self._store = store

    def __getitem__(self, partner_id: str) -> list[Message]:
        if partner_id not in self._store.partner_ids():
            raise KeyError(partner_id)
        return self._store.get_all(partner_id)

    def __iter__(self) -> Iterator[str]:
        return iter(self._store.partner_ids())

    def __len__(self) -> int:
        return len(self._store.partner_ids())


class LocalMessageStore:
    """Per-partner message archive on top of a :class:`KeyValueStorage`.

    None of the public methods raise: read problems come back as empty
    results and write problems as a ``False`` return, both logged.
    """

    def __init__(self, storage: KeyValueStorage, key_prefix: str = KEY_PREFIX) -> None:
        self._storage = storage
        self._key_prefix = key_prefix

    def storage_key(self, partner_id: str) -> str:
        return f"{self._key_prefix}{partner_id}"

    def _read(self, partner_id: str) -> list[Message]:
        raw = self._storage.get(self.storage_key(partner_id))
        if raw is None:
            return []
        return decode_record(raw)

    def get_all(self, partner_id: str) -> list[Message]:
        """Return the archived messages for ``partner_id``, oldest first."""

        try:
            return self._read(partner_id)
        except ArchiveFormatError as exc:
            logger.warning("Ignoring local archive for %s: %s", partner_id, exc)
        except Exception as exc:  # noqa: BLE001 - local archive never blocks callers.
            logger.warning("Local archive unavailable for %s: %s", partner_id, exc)
        return []

    def append(self, partner_id: str, message: Message) -> bool:
        """Archive ``message`` under ``partner_id`` unless its id is already there.

        Returns ``True`` once the message is durably stored (including when it
        already was) and ``False`` if it could not be written. A record that
        cannot be read is never overwritten.
        """

        if not partner_id:
            logger.error("Refusing to archive message %s without a partner id", message.id)
            return False

        try:
            messages = self._read(partner_id)
        except Exception as exc:  # noqa: BLE001 - reported through the return value.
            logger.error(
                "Cannot archive message %s for %s, existing record unreadable: %s",
                message.id,
                partner_id,
                exc,
            )
            return False

        if any(existing.id == message.id for existing in messages):
            return True

        messages.append(message.in_tier(StorageTier.LOCAL))
        messages.sort(key=lambda item: item.created_at)
        try:
            self._storage.set(self.storage_key(partner_id), encode_record(messages))
        except Exception as exc:  # noqa: BLE001 - reported through the return value.
            logger.error("Failed to archive message %s for %s: %s", message.id, partner_id, exc)
            return False
        return True

    def partner_ids(self) -> list[str]:
        try:
            keys = list(self._storage.keys())
        except Exception as exc:  # noqa: BLE001 - local archive never blocks callers.
            logger.warning("Unable to list local archive: %s", exc)
            return []
        prefix_length = len(self._key_prefix)
        return [
            key[prefix_length:]
            for key in keys
            if key.startswith(self._key_prefix) and len(key) > prefix_length
        ]

    def get_all_conversations(self) -> ArchivedConversations:
        return ArchivedConversations(self)

    def remove(self, partner_id: str) -> bool:
        """Drop the whole archive for ``partner_id``. There is no undo."""

        try:
            self._storage.delete(self.storage_key(partner_id))
        except Exception as exc:  # noqa: BLE001 - local archive never blocks callers.
            logger.error("Failed to remove local archive for %s: %s", partner_id, exc)
            return False
        return True
