"""mailsweep services.

Orchestration, the AI proxy client, command interpretation and the LLM
client. Imports are lazy to keep module import time low.
"""

from __future__ import annotations

from importlib import import_module
from typing import Any

_EXPORTS: dict[str, tuple[str, str]] = {
    # Orchestration
    "ActionReport": ("mailsweep.services.cleanup", "ActionReport"),
    "CleanupService": ("mailsweep.services.cleanup", "CleanupService"),
    "CommandType": ("mailsweep.services.cleanup", "CommandType"),
    "PreviewResult": ("mailsweep.services.cleanup", "PreviewResult"),
    "Session": ("mailsweep.services.cleanup", "Session"),
    # AI proxy client
    "AIProxyClient": ("mailsweep.services.proxy_client", "AIProxyClient"),
    # Command interpretation
    "CommandInterpreter": ("mailsweep.services.interpreter", "CommandInterpreter"),
    "extract_json": ("mailsweep.services.interpreter", "extract_json"),
    # LLM
    "AzureOpenAIClient": ("mailsweep.services.llm_client", "AzureOpenAIClient"),
    "LLMResponse": ("mailsweep.services.llm_client", "LLMResponse"),
    "create_llm_client": ("mailsweep.services.llm_client", "create_llm_client"),
    # Schemas
    "ParsedCommand": ("mailsweep.services.schemas", "ParsedCommand"),
    "ReplySuggestion": ("mailsweep.services.schemas", "ReplySuggestion"),
}

__all__ = list(_EXPORTS.keys())


def __getattr__(name: str) -> Any:
    if name not in _EXPORTS:
        raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
    module_name, attr_name = _EXPORTS[name]
    module = import_module(module_name)
    value = getattr(module, attr_name)
    globals()[name] = value
    return value


def __dir__() -> list[str]:
    return sorted(list(globals().keys()) + list(_EXPORTS.keys()))
