"""Gmail REST client for bulk inbox cleanup.

Covers the four provider-facing pieces of a cleanup run:
- Message Fetcher: list ids for a search query, then fetch summaries in chunks
- Batch Action Executor: trash or relabel messages one by one, collecting
  per-message outcomes
- Label Resolver: look a label up by name, creating it when absent
- Draft Composer: build a plain-text reply and save it as a threaded draft

Every call takes the OAuth access token explicitly; the client never caches
or refreshes it. Calls use the REST surface directly:

    GET  /users/me/messages?maxResults=&q=
    GET  /users/me/messages/{id}
    POST /users/me/messages/{id}/trash
    POST /users/me/messages/{id}/modify
    GET  /users/me/labels
    POST /users/me/labels
    POST /users/me/drafts

plus the OAuth userinfo endpoint for the signed-in address.

OAuth scopes required:
- https://www.googleapis.com/auth/gmail.modify
- https://www.googleapis.com/auth/userinfo.email
"""

import asyncio
import base64
import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass, field
from email import policy
from email.mime.text import MIMEText
from enum import Enum
from typing import Any

import httpx

from mailsweep.errors import AuthError, GmailError, InvalidActionError, ProviderError

logger = logging.getLogger(__name__)

# Defaults used when the caller does not say otherwise
DEFAULT_MAX_RESULTS = 100
DEFAULT_CHUNK_SIZE = 10

# Gmail system label IDs
INBOX_LABEL = "INBOX"
UNREAD_LABEL = "UNREAD"

REPLY_PREFIX = "Re:"

# Headers requested when fetching message summaries
SUMMARY_HEADERS = ["From", "Subject", "Date"]

_ANGLE_ADDRESS = re.compile(r"<(.+?)>")
_LINE_BREAKS = re.compile(r"[\r\n]+")
_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")


class ActionKind(str, Enum):
    """Bulk actions that can be applied to a list of messages."""

    DELETE = "delete"
    ARCHIVE = "archive"
    MARK_READ = "mark_read"
    MARK_UNREAD = "mark_unread"
    LABEL = "label"

    @classmethod
    def parse(cls, value: "ActionKind | str") -> "ActionKind":
        """Coerce an enum member, its value, or a camelCase alias.

        Raises:
            InvalidActionError: If the value names no known action.
        """
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            raise InvalidActionError(f"Unknown action: {value!r}")

        normalized = _CAMEL_BOUNDARY.sub("_", value.strip()).replace("-", "_").lower()
        try:
            return cls(normalized)
        except ValueError:
            raise InvalidActionError(f"Unknown action: {value!r}") from None


# Label changes for the actions that go through messages.modify
_LABEL_CHANGES: dict[ActionKind, dict[str, list[str]]] = {
    ActionKind.ARCHIVE: {"removeLabelIds": [INBOX_LABEL]},
    ActionKind.MARK_READ: {"removeLabelIds": [UNREAD_LABEL]},
    ActionKind.MARK_UNREAD: {"addLabelIds": [UNREAD_LABEL]},
}


@dataclass(frozen=True)
class MessageRef:
    """A message id/thread id pair as returned by messages.list."""

    id: str
    thread_id: str = ""

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "MessageRef":
        return cls(id=str(data.get("id", "")), thread_id=str(data.get("threadId", "")))


@dataclass(frozen=True)
class MessageSummary:
    """Read projection of a Gmail message used for previews and replies."""

    id: str
    thread_id: str
    sender: str
    subject: str
    date: str
    snippet: str
    label_ids: tuple[str, ...] = ()

    @classmethod
    def from_api(cls, msg: dict[str, Any]) -> "MessageSummary":
        """Build a summary from a raw messages.get response."""
        headers = {
            str(h.get("name", "")).lower(): str(h.get("value", ""))
            for h in (msg.get("payload") or {}).get("headers") or []
        }
        return cls(
            id=str(msg.get("id", "")),
            thread_id=str(msg.get("threadId", "")),
            sender=headers.get("from", ""),
            subject=headers.get("subject", ""),
            date=headers.get("date", ""),
            snippet=msg.get("snippet") or "",
            label_ids=tuple(msg.get("labelIds") or ()),
        )

    def to_dict(self) -> dict[str, Any]:
        """Wire shape used by the AI proxy."""
        return {
            "id": self.id,
            "threadId": self.thread_id,
            "from": self.sender,
            "subject": self.subject,
            "date": self.date,
            "snippet": self.snippet,
            "labelIds": list(self.label_ids),
        }


@dataclass(frozen=True)
class BatchFailure:
    """A message the batch action could not be applied to."""

    id: str
    error_message: str


@dataclass
class BatchResult:
    """Outcome of a batch action.

    Every input id lands in exactly one of the two lists, in input order.
    """

    succeeded: list[str] = field(default_factory=list)
    failed: list[BatchFailure] = field(default_factory=list)

    @property
    def success_count(self) -> int:
        return len(self.succeeded)

    @property
    def failed_count(self) -> int:
        return len(self.failed)

    @property
    def total_count(self) -> int:
        return self.success_count + self.failed_count

    @property
    def all_succeeded(self) -> bool:
        return not self.failed


@dataclass(frozen=True)
class Label:
    """A Gmail label."""

    id: str
    name: str


@dataclass(frozen=True)
class Draft:
    """A draft created by the composer. Never read back."""

    id: str
    message_raw: str
    thread_id: str = ""


@dataclass(frozen=True)
class UserInfo:
    """The signed-in Google account."""

    email: str
    name: str = ""
    picture: str = ""


def extract_recipient(from_header: str) -> str:
    """Return the address of a ``Display Name <address>`` header.

    Anything else is returned verbatim. No validation happens here; Gmail
    rejects malformed addresses when the draft is created.
    """
    match = _ANGLE_ADDRESS.search(from_header or "")
    if match:
        return match.group(1)
    return from_header or ""


def reply_subject(subject: str) -> str:
    """Prefix a subject with ``Re:`` once. Idempotent."""
    subject = subject or ""
    if subject.startswith(REPLY_PREFIX):
        return subject
    return f"{REPLY_PREFIX} {subject}"


def _header_value(value: str) -> str:
    # Header values come from the sender; a line break would start a new header
    return _LINE_BREAKS.sub(" ", value or "")


def build_raw_message(to: str, subject: str, body: str) -> str:
    """Build a plain-text UTF-8 message, base64url encoded without padding.

    Line breaks in ``to`` and ``subject`` are folded to spaces. Non-ASCII
    header values are RFC 2047 encoded.
    """
    message = MIMEText(body, "plain", "utf-8", policy=policy.SMTP)
    message["To"] = _header_value(to)
    message["Subject"] = _header_value(subject)
    return base64.urlsafe_b64encode(message.as_bytes()).decode("ascii").rstrip("=")


def _error_message(response: httpx.Response) -> str:
    """Pull the message out of a Gmail JSON error envelope."""
    try:
        data = response.json()
    except ValueError:
        data = None

    if isinstance(data, dict):
        error = data.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str) and error:
            return error

    return response.reason_phrase or f"HTTP {response.status_code}"


def _describe_failure(exc: Exception) -> str:
    if isinstance(exc, (ProviderError, AuthError)):
        return exc.message
    return str(exc) or exc.__class__.__name__


class GmailClient:
    """Async Gmail REST client for bulk cleanup.

    Holds only an HTTP connection pool; tokens are passed to every call.

    Args:
        client: Optional pre-built ``httpx.AsyncClient`` (tests inject one
            with a mock transport). Created lazily when omitted.
        base_url: Gmail API base URL (default: settings.gmail_api_base)
        timeout: Request timeout in seconds (default: settings.http_timeout_seconds)

    Example:
        >>> async with GmailClient() as gmail:
        ...     refs = await gmail.list_message_ids(token, "from:example.com", 10)
        ...     result = await gmail.apply_action(token, [r.id for r in refs], "archive")
    """

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
    ) -> None:
        # Import settings lazily to avoid circular imports
        from mailsweep.config import settings

        self.base_url = (base_url or settings.gmail_api_base).rstrip("/")
        self.userinfo_url = settings.userinfo_url
        self.timeout = timeout or settings.http_timeout_seconds
        self._client = client
        self._owns_client = client is None

    async def __aenter__(self) -> "GmailClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
            self._owns_client = True
        return self._client

    async def close(self) -> None:
        """Close the HTTP client if we own it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def _request(
        self,
        token: str,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
        url: str | None = None,
    ) -> dict[str, Any]:
        """Send one authorized request and return the decoded JSON body.

        ``url`` replaces ``base_url + path`` for calls outside the Gmail API.

        Raises:
            AuthError: Token missing, or Gmail answered 401.
            ProviderError: Any other non-2xx answer, or a 2xx body that is
                not JSON.
        """
        if not token:
            raise AuthError("No access token provided")

        client = await self._get_client()
        logger.debug("Gmail → %s %s", method, path)
        response = await client.request(
            method,
            url or f"{self.base_url}{path}",
            params=params,
            json=json,
            headers={"Authorization": f"Bearer {token}"},
        )

        if response.status_code == 401:
            raise AuthError(_error_message(response))
        if not response.is_success:
            raise ProviderError(response.status_code, _error_message(response))

        if not response.content:
            return {}
        try:
            data = response.json()
        except ValueError:
            raise ProviderError(response.status_code, "Invalid JSON response") from None
        return data if isinstance(data, dict) else {}

    # =========================================================================
    # Message Fetcher
    # =========================================================================

    async def list_message_ids(
        self,
        token: str,
        query: str = "",
        max_results: int = DEFAULT_MAX_RESULTS,
    ) -> list[MessageRef]:
        """List messages matching a Gmail search query.

        Args:
            token: OAuth access token
            query: Gmail search string; empty means all messages
            max_results: Upper bound on ids requested (Gmail may return fewer)

        Returns:
            MessageRefs in the order Gmail returned them
        """
        params: dict[str, Any] = {"maxResults": max_results}
        if query:
            params["q"] = query

        data = await self._request(token, "GET", "/users/me/messages", params=params)
        refs = [MessageRef.from_api(m) for m in data.get("messages") or []]

        logger.info(f"Listed {len(refs)} messages for query {query!r}")
        return refs

    async def get_message_details(
        self,
        token: str,
        ids: Sequence[str],
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> list[MessageSummary]:
        """Fetch summaries for many messages, a chunk at a time.

        Fetches inside a chunk run concurrently; the next chunk starts only
        after every fetch of the current one has finished. Output order
        matches ``ids``.

        Raises:
            ValueError: If chunk_size is less than 1.
            AuthError, ProviderError: The first failure in input order. There
                are no partial results.
        """
        if chunk_size < 1:
            raise ValueError(f"chunk_size must be at least 1, got {chunk_size}")

        summaries: list[MessageSummary] = []
        for start in range(0, len(ids), chunk_size):
            chunk = list(ids[start : start + chunk_size])
            results = await asyncio.gather(
                *(self._fetch_message(token, message_id) for message_id in chunk),
                return_exceptions=True,
            )

            for message_id, result in zip(chunk, results):
                if isinstance(result, BaseException):
                    logger.warning(f"Failed to fetch message {message_id}: {result}")
                    raise result

            summaries.extend(MessageSummary.from_api(msg) for msg in results)

        return summaries

    async def _fetch_message(self, token: str, message_id: str) -> dict[str, Any]:
        return await self._request(
            token,
            "GET",
            f"/users/me/messages/{message_id}",
            params={"format": "metadata", "metadataHeaders": SUMMARY_HEADERS},
        )

    # =========================================================================
    # Batch Action Executor
    # =========================================================================

    async def apply_action(
        self,
        token: str,
        ids: Sequence[str],
        action: ActionKind | str,
        label_id: str | None = None,
    ) -> BatchResult:
        """Apply an action to each message, one request at a time.

        A failure on one message is recorded and the loop moves on. Nothing is
        rolled back.

        Args:
            token: OAuth access token
            ids: Message ids, processed in order
            action: Action to apply
            label_id: Resolved label id, required for ActionKind.LABEL

        Returns:
            BatchResult partitioning ``ids`` into succeeded and failed

        Raises:
            InvalidActionError: Unknown action or label action without label_id.
            AuthError: No token was given.
        """
        kind = ActionKind.parse(action)
        if kind is ActionKind.LABEL and not label_id:
            raise InvalidActionError("Label action requires a resolved label id")
        if not token:
            raise AuthError("No access token provided")

        result = BatchResult()
        for message_id in ids:
            try:
                await self._apply_one(token, message_id, kind, label_id)
            except (GmailError, httpx.HTTPError) as e:
                logger.error(f"Failed to {kind.value} message {message_id}: {e}")
                result.failed.append(
                    BatchFailure(id=message_id, error_message=_describe_failure(e))
                )
            else:
                result.succeeded.append(message_id)

        logger.info(
            f"Applied {kind.value} to {result.success_count}/{len(ids)} messages "
            f"({result.failed_count} failed)"
        )
        return result

    async def _apply_one(
        self,
        token: str,
        message_id: str,
        kind: ActionKind,
        label_id: str | None,
    ) -> None:
        if kind is ActionKind.DELETE:
            await self._request(token, "POST", f"/users/me/messages/{message_id}/trash")
            return

        if kind is ActionKind.LABEL:
            body: dict[str, list[str]] = {"addLabelIds": [label_id or ""]}
        else:
            body = _LABEL_CHANGES[kind]

        await self._request(token, "POST", f"/users/me/messages/{message_id}/modify", json=body)

    # =========================================================================
    # Label Resolver
    # =========================================================================

    async def list_labels(self, token: str) -> list[Label]:
        """Return every label on the account, system labels included."""
        data = await self._request(token, "GET", "/users/me/labels")
        return [
            Label(id=str(lbl.get("id", "")), name=str(lbl.get("name", "")))
            for lbl in data.get("labels") or []
            if isinstance(lbl, dict)
        ]

    async def create_label(self, token: str, name: str) -> Label:
        """Create a label shown in both the label list and message list."""
        data = await self._request(
            token,
            "POST",
            "/users/me/labels",
            json={
                "name": name,
                "labelListVisibility": "labelShow",
                "messageListVisibility": "show",
            },
        )
        label = Label(id=str(data.get("id", "")), name=str(data.get("name", name)))
        logger.info(f"Created Gmail label {name!r} (id={label.id})")
        return label

    async def ensure_label(self, token: str, name: str) -> str:
        """Return the id of the label called ``name``, creating it if needed.

        Name matching is exact and case-sensitive; the first match wins. Two
        concurrent callers asking for the same new name can both create it.
        """
        for label in await self.list_labels(token):
            if label.name == name:
                logger.debug("Label %r already exists (id=%s)", name, label.id)
                return label.id

        return (await self.create_label(token, name)).id

    # =========================================================================
    # Draft Composer
    # =========================================================================

    async def create_draft_reply(
        self,
        token: str,
        source_message_id: str,
        thread_id: str,
        to: str,
        subject: str,
        body: str,
    ) -> Draft:
        """Save a plain-text reply as a draft on the original thread.

        Args:
            token: OAuth access token
            source_message_id: Message being replied to (for logging)
            thread_id: Thread to attach the draft to
            to: Recipient, either a bare address or a From-style header
            subject: Original or reply subject; prefixed with "Re:" once
            body: Plain text body

        Returns:
            The created Draft
        """
        recipient = extract_recipient(to)
        raw = build_raw_message(recipient, reply_subject(subject), body)

        data = await self._request(
            token,
            "POST",
            "/users/me/drafts",
            json={"message": {"raw": raw, "threadId": thread_id}},
        )
        draft = Draft(
            id=str(data.get("id", "")),
            message_raw=raw,
            thread_id=str((data.get("message") or {}).get("threadId", thread_id)),
        )

        logger.info(f"Created draft {draft.id} replying to message {source_message_id}")
        return draft

    # =========================================================================
    # Account
    # =========================================================================

    async def get_user_info(self, token: str) -> UserInfo:
        """Look up the account the token belongs to.

        Raises:
            AuthError: Token missing or rejected.
            ProviderError: The userinfo endpoint answered with another error.
        """
        data = await self._request(token, "GET", "/userinfo", url=self.userinfo_url)
        return UserInfo(
            email=str(data.get("email", "")),
            name=str(data.get("name", "")),
            picture=str(data.get("picture", "")),
        )
