import json
import os
from pathlib import Path
from typing import Any, Dict, Optional


API_KEY_ENV = "OPENROUTER_API_KEY"

DEFAULT_SETTINGS: Dict[str, Any] = {
    "title": "🗨️ Let's Talk with Abhishek's AI Chatbot",
    "transport": "direct",
    "openrouter": {
        "base_url": "https://openrouter.ai/api/v1/chat/completions",
        "api_key": "",
        "models": [
            "google/gemini-pro",
            "anthropic/claude-3-opus",
            "openai/gpt-3.5-turbo",
        ],
        "max_tokens": 1000,
        "temperature": 0.7,
        "top_p": 0.9,
        "timeout": 60,
    },
    "retry": {
        "attempts": 3,
        "initial_delay_ms": 1000,
    },
    "greetings": ["hi", "hello", "hey"],
    "replies": {
        "placeholder": "🤖 No response from model.",
        "exhausted": "🤖 Sorry, all models failed to respond. Try again later.",
        "greeting": "👋 Hi! I am a chatbot developed by Abhishek Chahar. How can I assist you today?",
        "failure": "⚠️ Failed to fetch AI response.",
    },
    "relay": {
        "url": "http://localhost:5000",
        "reply_timeout": 60,
    },
}


class ConfigurationError(RuntimeError):
    """Raised when a required configuration value is missing or invalid."""


class SettingsManager:
    """
    Handles loading and persisting the editable configuration file.

    The file is stored as pretty-printed JSON so it can be edited by hand.
    The API key is deliberately left out of the defaults; see `resolve_api_key`.
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        self._settings: Optional[Dict[str, Any]] = None
        self.path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def settings(self) -> Dict[str, Any]:
        if self._settings is None:
            self._settings = self._load_from_disk()
        return self._settings

    def _load_from_disk(self) -> Dict[str, Any]:
        if not self.path.exists():
            self._write(DEFAULT_SETTINGS)
            return json.loads(json.dumps(DEFAULT_SETTINGS))
        with self.path.open("r", encoding="utf-8") as handle:
            data = json.load(handle)
        # Merge with defaults to backfill new keys without overwriting manual edits.
        merged = json.loads(json.dumps(DEFAULT_SETTINGS))
        _deep_update(merged, data)
        return merged

    def _write(self, data: Dict[str, Any]) -> None:
        with self.path.open("w", encoding="utf-8") as handle:
            json.dump(data, handle, indent=2, sort_keys=True, ensure_ascii=False)
            handle.write("\n")


def resolve_api_key(settings: Dict[str, Any]) -> str:
    """
    Return the completion API credential.

    The environment wins over the settings file. Raises `ConfigurationError`
    when neither supplies a non-empty key.
    """
    key = os.environ.get(API_KEY_ENV, "").strip()
    if not key:
        key = str(settings.get("openrouter", {}).get("api_key") or "").strip()
    if not key:
        raise ConfigurationError(
            f"No API key configured. Set {API_KEY_ENV} or openrouter.api_key in settings."
        )
    return key


def _deep_update(target: Dict[str, Any], source: Dict[str, Any]) -> None:
    """
    Recursively update a mapping, preserving nested structures.
    """
    for key, value in source.items():
        if isinstance(value, dict) and isinstance(target.get(key), dict):
            _deep_update(target[key], value)
        else:
            target[key] = value
