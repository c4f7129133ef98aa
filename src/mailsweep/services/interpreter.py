"""Prompt shaping and response validation for the AI proxy.

Turns a cleanup command into ``{action, query, label?}`` and drafts short
reply suggestions for a sample of matching messages. Model output is
validated before it leaves this module; anything else raises ParseError
with the raw text attached.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Mapping, Sequence
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from mailsweep.errors import ParseError
from mailsweep.services.schemas import ParsedCommand, ReplySuggestion, SuggestionList

if TYPE_CHECKING:
    from mailsweep.services.llm_client import AzureOpenAIClient

logger = logging.getLogger(__name__)

DEFAULT_SAMPLE_SIZE = 5
DEFAULT_COMMAND = "Cleanup emails"

_FENCED_JSON = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL | re.IGNORECASE)
_BRACED_JSON = re.compile(r"\{.*\}", re.DOTALL)

PARSE_PROMPT = """You turn Gmail cleanup requests into structured actions.

From the command below, extract:
1. action: one of "delete", "archive", "mark_read", "mark_unread" or "label"
2. query: a Gmail search query matching the emails the user means
3. label: the label name, only when action is "label"

Command: "{command}"

Answer with JSON only, shaped exactly like this:
{{
  "action": "delete|archive|mark_read|mark_unread|label",
  "query": "gmail search query",
  "label": "label name (label action only)"
}}

Examples:
Command: "Delete promotional emails older than 6 months"
Response: {{"action": "delete", "query": "category:promotions older_than:6m"}}

Command: "Archive newsletters from last year"
Response: {{"action": "archive", "query": "category:updates older_than:1y"}}

Command: "Mark all unread LinkedIn emails as read"
Response: {{"action": "mark_read", "query": "from:linkedin.com is:unread"}}

Command: "Label all receipts from Amazon as Receipts"
Response: {{"action": "label", "query": "from:amazon.com subject:(order OR receipt)", "label": "Receipts"}}"""

SUGGEST_PROMPT = """You write short email replies a user may want to send before cleaning up their inbox.

User command: "{command}"

Sample messages:
{messages}

Write 3 to 5 brief, polite replies suited to these messages: a courteous
decline, an unsubscribe request, an acknowledgement or a quick answer. Keep each
to one or two sentences.

Answer with JSON only (no markdown), shaped exactly like this:
{{
  "suggestions": [
    {{ "text": "Thanks for reaching out. I'm tidying my inbox and won't be able to reply to this one." }},
    {{ "text": "I appreciate the message, but please remove me from future mailings." }}
  ]
}}"""


def extract_json(text: str) -> dict[str, Any]:
    """Decode a JSON object from model output.

    Accepts bare JSON, JSON inside a markdown fence, or the outermost
    ``{...}`` span of surrounding prose.

    Raises:
        ParseError: If no JSON object can be decoded.
    """
    candidates = [text.strip()]
    fenced = _FENCED_JSON.search(text)
    if fenced:
        candidates.append(fenced.group(1).strip())
    braced = _BRACED_JSON.search(text)
    if braced:
        candidates.append(braced.group(0))

    for candidate in candidates:
        if not candidate:
            continue
        try:
            data = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(data, dict):
            return data

    logger.warning("AI returned content that is not a JSON object: %.500s", text)
    raise ParseError("AI returned invalid JSON", raw_content=text)


def format_messages(messages: Sequence[Mapping[str, Any]]) -> str:
    blocks = []
    for idx, msg in enumerate(messages, start=1):
        blocks.append(
            f"Message {idx}:\n"
            f"From: {msg.get('from', '')}\n"
            f"Subject: {msg.get('subject', '')}\n"
            f"Snippet: {msg.get('snippet', '')}\n"
            "---"
        )
    return "\n\n".join(blocks)


class CommandInterpreter:
    """Runs cleanup prompts through the LLM and validates what comes back."""

    def __init__(
        self,
        llm: AzureOpenAIClient,
        sample_size: int = DEFAULT_SAMPLE_SIZE,
    ) -> None:
        self.llm = llm
        self.sample_size = sample_size

    def parse_command(self, command: str) -> ParsedCommand:
        """Translate a natural-language command into a ParsedCommand.

        Raises:
            ParseError: If the model output is not JSON or fails validation.
        """
        response = self.llm.complete(PARSE_PROMPT.format(command=command))
        data = extract_json(response.text)

        try:
            parsed = ParsedCommand.model_validate(data)
        except ValidationError as e:
            logger.warning("AI parse result failed validation: %s; raw=%.500s", e, response.text)
            raise ParseError(f"AI returned an invalid command: {e}", raw_content=response.text) from e

        logger.info(f"Parsed command into action={parsed.action.value} query={parsed.query!r}")
        return parsed

    def suggest_replies(
        self,
        messages: Sequence[Mapping[str, Any]],
        command: str | None = None,
    ) -> list[ReplySuggestion]:
        """Draft reply suggestions from the first ``sample_size`` messages.

        Raises:
            ParseError: If the model output is not JSON or fails validation.
        """
        sample = list(messages[: self.sample_size])
        prompt = SUGGEST_PROMPT.format(
            command=command or DEFAULT_COMMAND,
            messages=format_messages(sample),
        )
        response = self.llm.complete(prompt)
        data = extract_json(response.text)

        try:
            suggestions = SuggestionList.model_validate(data).suggestions
        except ValidationError as e:
            logger.warning("AI suggestions failed validation: %s; raw=%.500s", e, response.text)
            raise ParseError(f"AI returned invalid suggestions: {e}", raw_content=response.text) from e

        logger.info(f"Generated {len(suggestions)} reply suggestions from {len(sample)} messages")
        return suggestions
