from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator

from mailsweep.errors import InvalidActionError
from mailsweep.google.gmail import ActionKind


class ParsedCommand(BaseModel):
    """Structured form of a natural-language cleanup command."""

    action: ActionKind
    query: str = ""
    label: str | None = None

    @field_validator("action", mode="before")
    @classmethod
    def _coerce_action(cls, value: Any) -> ActionKind:
        try:
            return ActionKind.parse(value)
        except InvalidActionError as e:
            raise ValueError(str(e)) from None

    @field_validator("query", mode="before")
    @classmethod
    def _coerce_query(cls, value: Any) -> str:
        return "" if value is None else str(value).strip()

    @field_validator("label", mode="before")
    @classmethod
    def _coerce_label(cls, value: Any) -> str | None:
        if value is None:
            return None
        label = str(value).strip()
        return label or None

    @model_validator(mode="after")
    def _label_required(self) -> "ParsedCommand":
        if self.action is ActionKind.LABEL and not self.label:
            raise ValueError("label is required when action is 'label'")
        return self

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


class ReplySuggestion(BaseModel):
    text: str = Field(min_length=1)


class SuggestionList(BaseModel):
    suggestions: list[ReplySuggestion] = Field(default_factory=list)
