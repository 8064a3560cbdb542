"""Remote message gateway and its Supabase (PostgREST) implementation."""

from __future__ import annotations

import abc
import logging
from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Optional

from curl_cffi import CurlError
from curl_cffi.requests import AsyncSession

from .errors import MalformedMessageError, RemoteServiceError, UnexpectedResponseError
from .models import ListingSummary, Message, Profile

logger = logging.getLogger(__name__)

REST_API = "{base}/rest/v1/{table}"
MESSAGES_TABLE = "messages"
PROFILES_TABLE = "profiles"
LISTINGS_TABLE = "listings"


def quote_value(value: str) -> str:
    """Quote a value for use inside a PostgREST filter expression."""

    escaped = str(value).replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def in_filter(values: Iterable[str]) -> str:
    return "in.({})".format(",".join(quote_value(value) for value in values))


@dataclass(frozen=True)
class MessageFilter:
    """Messages where ``participant`` is sender or receiver, optionally
    narrowed to the exchange with ``partner``."""

    participant: str
    partner: Optional[str] = None

    def matches(self, message: Message) -> bool:
        if not message.involves(self.participant):
            return False
        if self.partner is None:
            return True
        return message.partner_of(self.participant) == self.partner

    def to_params(self) -> dict[str, str]:
        me = quote_value(self.participant)
        if self.partner is None:
            return {"or": f"(sender_id.eq.{me},receiver_id.eq.{me})"}
        other = quote_value(self.partner)
        return {
            "or": (
                f"(and(sender_id.eq.{me},receiver_id.eq.{other}),"
                f"and(sender_id.eq.{other},receiver_id.eq.{me}))"
            )
        }


class RemoteMessageGateway(abc.ABC):
    """Operations the chat needs from the shared backend row store."""

    @abc.abstractmethod
    async def query_messages(self, message_filter: MessageFilter) -> list[Message]:
        ...

    @abc.abstractmethod
    async def insert_message(self, row: Mapping[str, Any]) -> Message:
        ...

    @abc.abstractmethod
    async def update_messages(self, ids: Iterable[str], patch: Mapping[str, Any]) -> None:
        ...

    @abc.abstractmethod
    async def delete_messages(self, ids: Iterable[str]) -> None:
        ...

    @abc.abstractmethod
    async def lookup_profiles(self, ids: Iterable[str]) -> list[Profile]:
        ...

    @abc.abstractmethod
    async def lookup_listings(self, ids: Iterable[str]) -> list[ListingSummary]:
        ...


def _parse_messages(operation: str, rows: Any) -> list[Message]:
    if not isinstance(rows, list):
        raise UnexpectedResponseError(operation, "expected a list of rows", rows)
    try:
        return [Message.from_row(row) for row in rows]
    except MalformedMessageError as exc:
        raise UnexpectedResponseError(operation, exc, exc.row) from exc


def _error_detail(response) -> str:
    try:
        payload = response.json()
    except Exception:  # noqa: BLE001 - fall back to the raw body.
        return (response.text or "")[:200]
    if isinstance(payload, Mapping):
        return str(payload.get("message") or payload.get("error") or payload)
    return str(payload)[:200]


class SupabaseGateway(RemoteMessageGateway):
    def __init__(
        self,
        base_url: str,
        api_key: str,
        access_token: Optional[str] = None,
        proxies: Optional[dict] = None,
        timeout: float = 30,
        session: Optional[AsyncSession] = None,
    ):
        """
        Initializes the gateway.

        Args:
            base_url (str): Project URL, e.g. ``https://abc.supabase.co``.
            api_key (str): The project's anon (or service) key.
            access_token (Optional[str]): The signed-in user's JWT. Row level
                security sees the anon role when omitted.
            proxies (Optional[dict]): Proxy settings handed to curl_cffi.
            timeout (float): Per-request timeout in seconds.
            session (Optional[AsyncSession]): An existing session to reuse.
                The gateway only closes sessions it created itself.
        """
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.access_token = access_token
        self.proxies = proxies
        self.timeout = timeout
        self.session = session
        self._owns_session = False

    async def __aenter__(self) -> "SupabaseGateway":
        if self.session is None:
            self.session = AsyncSession(timeout=self.timeout, proxies=self.proxies)
            self._owns_session = True
        return self

    async def __aexit__(self, *args) -> None:
        if self._owns_session and self.session is not None:
            await self.session.close()
            self.session = None
            self._owns_session = False

    def build_request_headers(self, prefer: Optional[str] = None) -> dict[str, str]:
        headers = {
            "apikey": self.api_key,
            "Authorization": f"Bearer {self.access_token or self.api_key}",
            "Accept": "application/json",
            "Content-Type": "application/json",
        }
        if prefer:
            headers["Prefer"] = prefer
        return headers

    async def _request(
        self,
        operation: str,
        method: str,
        table: str,
        params: Optional[dict[str, str]] = None,
        payload: Any = None,
        prefer: Optional[str] = None,
    ) -> Any:
        if self.session is None:
            raise RuntimeError("SupabaseGateway must be used inside 'async with'")

        url = REST_API.format(base=self.base_url, table=table)
        try:
            response = await self.session.request(
                method,
                url,
                params=params,
                json=payload,
                headers=self.build_request_headers(prefer),
            )
        except CurlError as exc:
            logger.warning("%s: transport error: %s", operation, exc)
            raise RemoteServiceError(operation, detail=str(exc)) from exc

        if response.status_code >= 400:
            detail = _error_detail(response)
            logger.warning("%s: HTTP %s %s", operation, response.status_code, detail)
            raise RemoteServiceError(operation, response.status_code, detail)

        if response.status_code == 204 or not response.content:
            return None

        try:
            return response.json()
        except ValueError as exc:
            raise UnexpectedResponseError(operation, exc, response.text) from exc

    async def query_messages(self, message_filter: MessageFilter) -> list[Message]:
        operation = "query messages"
        params = {"select": "*", "order": "created_at.asc"}
        params.update(message_filter.to_params())
        rows = await self._request(operation, "GET", MESSAGES_TABLE, params=params)
        return _parse_messages(operation, rows)

    async def insert_message(self, row: Mapping[str, Any]) -> Message:
        operation = "insert message"
        rows = await self._request(
            operation,
            "POST",
            MESSAGES_TABLE,
            payload=dict(row),
            prefer="return=representation",
        )
        messages = _parse_messages(operation, rows)
        if not messages:
            raise UnexpectedResponseError(operation, "no row returned", rows)
        return messages[0]

    async def update_messages(self, ids: Iterable[str], patch: Mapping[str, Any]) -> None:
        ids = list(ids)
        if not ids:
            return
        await self._request(
            "update messages",
            "PATCH",
            MESSAGES_TABLE,
            params={"id": in_filter(ids)},
            payload=dict(patch),
            prefer="return=minimal",
        )

    async def delete_messages(self, ids: Iterable[str]) -> None:
        ids = list(ids)
        if not ids:
            return
        await self._request(
            "delete messages",
            "DELETE",
            MESSAGES_TABLE,
            params={"id": in_filter(ids)},
            prefer="return=minimal",
        )

    async def lookup_profiles(self, ids: Iterable[str]) -> list[Profile]:
        ids = list(ids)
        if not ids:
            return []
        rows = await self._request(
            "lookup profiles",
            "GET",
            PROFILES_TABLE,
            params={"select": "id,full_name,avatar_url", "id": in_filter(ids)},
        )
        return [Profile.from_row(row) for row in rows or [] if isinstance(row, Mapping)]

    async def lookup_listings(self, ids: Iterable[str]) -> list[ListingSummary]:
        ids = list(ids)
        if not ids:
            return []
        rows = await self._request(
            "lookup listings",
            "GET",
            LISTINGS_TABLE,
            params={"select": "id,make,model,year,price", "id": in_filter(ids)},
        )
        return [ListingSummary.from_row(row) for row in rows or [] if isinstance(row, Mapping)]
