"""Top-level package for chat-relay."""

from __future__ import annotations

from importlib import import_module
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .app import ChatRelayApp
    from .client import ProxyClient
    from .commands import CommandInterceptor, CommandTable
    from .config import ensure_config_dir, load_config
    from .conversation import Conversation, SubmitOutcome
    from .exceptions import (
        ChatRelayError,
        CommandValidationError,
        ConfigValidationError,
        ProviderError,
        ProxyError,
    )
    from .preferences import PreferenceStore
    from .provider import OllamaProvider
    from .server import create_app
    from .state import ConversationState, StateManager

_EXPORTS: dict[str, str] = {
    "ChatRelayApp": ".app",
    "ProxyClient": ".client",
    "CommandInterceptor": ".commands",
    "CommandTable": ".commands",
    "ensure_config_dir": ".config",
    "load_config": ".config",
    "Conversation": ".conversation",
    "SubmitOutcome": ".conversation",
    "ChatRelayError": ".exceptions",
    "CommandValidationError": ".exceptions",
    "ConfigValidationError": ".exceptions",
    "ProviderError": ".exceptions",
    "ProxyError": ".exceptions",
    "PreferenceStore": ".preferences",
    "OllamaProvider": ".provider",
    "create_app": ".server",
    "ConversationState": ".state",
    "StateManager": ".state",
}

__all__ = sorted(_EXPORTS)


def __getattr__(name: str) -> Any:
    """Lazily import symbols so the relay service never loads the UI stack."""
    module_name = _EXPORTS.get(name)
    if module_name is None:
        raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
    return getattr(import_module(module_name, __name__), name)
