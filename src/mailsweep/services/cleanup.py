"""Cleanup orchestration: preview a command, run an action, draft replies.

Sequences the AI proxy and the Gmail client for one user request. The
caller's credentials travel in an explicit Session; nothing here keeps a
token between calls.
"""

import logging
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import httpx
from pydantic import ValidationError

from mailsweep.errors import GmailError, InvalidActionError, ParseError, ProviderError, ProxyError
from mailsweep.google.gmail import (
    ActionKind,
    BatchFailure,
    BatchResult,
    GmailClient,
    MessageSummary,
    extract_recipient,
)
from mailsweep.sentry import set_user_context
from mailsweep.services.proxy_client import AIProxyClient
from mailsweep.services.schemas import ParsedCommand, ReplySuggestion

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Session:
    """Credentials for one signed-in user."""

    access_token: str
    email: str | None = None


class CommandType(str, Enum):
    """Requests the cleanup service knows how to handle."""

    PREVIEW = "preview_command"
    EXECUTE = "execute_action"
    CREATE_DRAFTS = "create_drafts"


@dataclass
class PreviewResult:
    """What the user sees before confirming an action."""

    parsed: ParsedCommand
    message_count: int
    messages: list[MessageSummary] = field(default_factory=list)
    suggestions: list[ReplySuggestion] = field(default_factory=list)


@dataclass
class ActionReport:
    """Counts and failures of an executed action or draft run."""

    success_count: int
    failed_count: int
    total_count: int
    failures: list[BatchFailure] = field(default_factory=list)

    @classmethod
    def from_batch(cls, result: BatchResult) -> "ActionReport":
        return cls(
            success_count=result.success_count,
            failed_count=result.failed_count,
            total_count=result.total_count,
            failures=list(result.failed),
        )

    @property
    def all_succeeded(self) -> bool:
        return self.failed_count == 0


class CleanupService:
    """Runs cleanup requests against Gmail and the AI proxy.

    Args:
        gmail: Gmail client (default: a new GmailClient)
        proxy: AI proxy client (default: a new AIProxyClient)
        list_max_results: Ids requested from Gmail per preview
        preview_limit: Messages whose details are fetched for a preview
        chunk_size: Concurrent detail fetches per chunk
        suggestion_sample_size: Messages sent to the proxy for suggestions
    """

    def __init__(
        self,
        gmail: GmailClient | None = None,
        proxy: AIProxyClient | None = None,
        *,
        list_max_results: int | None = None,
        preview_limit: int | None = None,
        chunk_size: int | None = None,
        suggestion_sample_size: int | None = None,
    ) -> None:
        from mailsweep.config import settings

        self.gmail = gmail or GmailClient()
        self.proxy = proxy or AIProxyClient()
        self.list_max_results = list_max_results or settings.list_max_results
        self.preview_limit = preview_limit or settings.preview_limit
        self.chunk_size = chunk_size or settings.detail_chunk_size
        self.suggestion_sample_size = suggestion_sample_size or settings.suggestion_sample_size

        self._handlers: dict[
            CommandType, Callable[[Session, Mapping[str, Any]], Awaitable[Any]]
        ] = {
            CommandType.PREVIEW: self._handle_preview,
            CommandType.EXECUTE: self._handle_execute,
            CommandType.CREATE_DRAFTS: self._handle_create_drafts,
        }

    async def close(self) -> None:
        await self.gmail.close()
        await self.proxy.close()

    async def start_session(self, access_token: str) -> Session:
        """Build a Session for ``access_token``, looking up the account address.

        The address only labels logs and error reports, so a failed lookup
        leaves it unset. An invalid token still raises AuthError.
        """
        email = None
        try:
            user = await self.gmail.get_user_info(access_token)
            email = user.email or None
        except (ProviderError, httpx.HTTPError) as e:
            logger.warning(f"Failed to look up account address: {e}")

        if email:
            logger.info(f"Signed in as {email}")
        return Session(access_token=access_token, email=email)

    async def dispatch(
        self,
        session: Session,
        command_type: CommandType | str,
        request: Mapping[str, Any],
    ) -> PreviewResult | ActionReport:
        """Route a request to its handler.

        Raises:
            ValueError: Unknown command type.
        """
        handler = self._handlers[CommandType(command_type)]
        set_user_context(session.email)
        return await handler(session, request)

    async def _handle_preview(self, session: Session, request: Mapping[str, Any]) -> PreviewResult:
        return await self.preview(
            session,
            request.get("command", ""),
            action_override=request.get("action_override"),
            label_name=request.get("label_name"),
        )

    async def _handle_execute(self, session: Session, request: Mapping[str, Any]) -> ActionReport:
        return await self.execute(
            session,
            request.get("message_ids", []),
            request["action"],
            label_name=request.get("label_name"),
        )

    async def _handle_create_drafts(
        self, session: Session, request: Mapping[str, Any]
    ) -> ActionReport:
        return await self.create_drafts(
            session,
            request.get("message_ids", []),
            request.get("suggestion_text", ""),
        )

    async def preview(
        self,
        session: Session,
        command: str,
        action_override: ActionKind | str | None = None,
        label_name: str | None = None,
    ) -> PreviewResult:
        """Parse a command and show which messages it would touch.

        With ``action_override`` the AI parse step is skipped and the search
        covers recent mail. Reply suggestions are best-effort: if the proxy
        fails the preview comes back without them.
        """
        if action_override:
            try:
                parsed = ParsedCommand(action=action_override, query="", label=label_name)
            except ValidationError as e:
                raise InvalidActionError(f"Invalid action override: {e}") from e
        else:
            parsed = await self.proxy.parse_command(command)

        refs = await self.gmail.list_message_ids(
            session.access_token, parsed.query, self.list_max_results
        )
        ids = [ref.id for ref in refs[: self.preview_limit]]
        messages = await self.gmail.get_message_details(session.access_token, ids, self.chunk_size)

        suggestions: list[ReplySuggestion] = []
        if messages:
            try:
                suggestions = await self.proxy.suggest_replies(
                    command, parsed, messages[: self.suggestion_sample_size]
                )
            except (ProxyError, ParseError, httpx.HTTPError) as e:
                logger.warning(f"Failed to get reply suggestions: {e}")

        logger.info(
            f"Preview for action={parsed.action.value}: {len(refs)} matches, "
            f"{len(messages)} fetched, {len(suggestions)} suggestions"
        )
        return PreviewResult(
            parsed=parsed,
            message_count=len(refs),
            messages=messages,
            suggestions=suggestions,
        )

    async def execute(
        self,
        session: Session,
        message_ids: Sequence[str],
        action: ActionKind | str,
        label_name: str | None = None,
    ) -> ActionReport:
        """Apply an action to the selected messages.

        For label actions the label is resolved (or created) first; a failure
        there aborts before any message is touched.
        """
        kind = ActionKind.parse(action)

        label_id = None
        if kind is ActionKind.LABEL:
            if not label_name:
                raise InvalidActionError("Label action requires a label name")
            label_id = await self.gmail.ensure_label(session.access_token, label_name)

        result = await self.gmail.apply_action(
            session.access_token, message_ids, kind, label_id=label_id
        )
        return ActionReport.from_batch(result)

    async def create_drafts(
        self,
        session: Session,
        message_ids: Sequence[str],
        suggestion_text: str,
    ) -> ActionReport:
        """Save ``suggestion_text`` as a reply draft to each selected message.

        Fetching the messages must succeed as a whole; after that each draft
        succeeds or fails on its own.
        """
        if not suggestion_text.strip():
            raise ValueError("suggestion_text must not be empty")

        messages = await self.gmail.get_message_details(
            session.access_token, message_ids, self.chunk_size
        )

        result = BatchResult()
        for message in messages:
            try:
                await self.gmail.create_draft_reply(
                    session.access_token,
                    message.id,
                    message.thread_id,
                    extract_recipient(message.sender),
                    message.subject,
                    suggestion_text,
                )
            except (GmailError, httpx.HTTPError) as e:
                logger.error(f"Failed to create draft for message {message.id}: {e}")
                error_message = getattr(e, "message", None) or str(e)
                result.failed.append(BatchFailure(id=message.id, error_message=error_message))
            else:
                result.succeeded.append(message.id)

        return ActionReport.from_batch(result)
