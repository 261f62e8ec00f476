from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, FrozenSet, Iterable, List, Optional

from .llm import CompletionClient, CompletionError, RateLimitError, extract_reply
from .settings import DEFAULT_SETTINGS, ConfigurationError


logger = logging.getLogger("fallback_chat.fetcher")

SleepFn = Callable[[float], Awaitable[Any]]


@dataclass
class RetryState:
    """Attempt budget and backoff delay for one model during one fetch."""

    retries_remaining: int
    backoff_delay_ms: int

    def consume(self) -> None:
        self.retries_remaining -= 1

    def escalate(self) -> None:
        self.backoff_delay_ms *= 2


def build_greeting_set(words: Iterable[str]) -> FrozenSet[str]:
    """
    Expand greeting words into every accepted variant.

    Each word may be followed by " there" and then by "!". Entries are stored
    lower-cased and trimmed; callers normalise input the same way.
    """
    variants = set()
    for word in words:
        base = word.strip().lower()
        if not base:
            continue
        for phrase in (base, f"{base} there"):
            variants.add(phrase)
            variants.add(f"{phrase}!")
    return frozenset(variants)


def is_greeting(text: str, greetings: FrozenSet[str]) -> bool:
    return text.strip().lower() in greetings


class ResponseFetcher:
    """
    Produce an assistant reply for a single user message.

    Models are tried strictly in order. Each model gets its own `RetryState`;
    a 429 sleeps for the current delay and doubles it, any other failure just
    spends an attempt. `fetch_reply` always resolves to a string.
    """

    def __init__(
        self,
        client: CompletionClient,
        models: Iterable[str],
        *,
        max_tokens: int = 1000,
        temperature: float = 0.7,
        top_p: float = 0.9,
        attempts: int = 3,
        initial_delay_ms: int = 1000,
        greetings: Optional[Iterable[str]] = None,
        placeholder: str = DEFAULT_SETTINGS["replies"]["placeholder"],
        exhausted_reply: str = DEFAULT_SETTINGS["replies"]["exhausted"],
        greeting_reply: str = DEFAULT_SETTINGS["replies"]["greeting"],
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        if attempts < 1:
            raise ConfigurationError("retry.attempts must be at least 1.")
        if initial_delay_ms < 1:
            raise ConfigurationError("retry.initial_delay_ms must be positive.")
        # dict.fromkeys keeps the first occurrence, so priority order survives.
        self.models: List[str] = list(dict.fromkeys(models))
        if not self.models:
            raise ConfigurationError("At least one model must be configured.")
        self.client = client
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.top_p = top_p
        self.attempts = attempts
        self.initial_delay_ms = initial_delay_ms
        self.greetings = build_greeting_set(
            DEFAULT_SETTINGS["greetings"] if greetings is None else greetings
        )
        self.placeholder = placeholder
        self.exhausted_reply = exhausted_reply
        self.greeting_reply = greeting_reply
        self._sleep = sleep

    @classmethod
    def from_settings(
        cls,
        settings: Dict[str, Any],
        api_key: str,
        *,
        sleep: SleepFn = asyncio.sleep,
    ) -> "ResponseFetcher":
        upstream = settings["openrouter"]
        replies = settings["replies"]
        client = CompletionClient(
            base_url=upstream["base_url"],
            api_key=api_key,
            timeout=upstream.get("timeout", 60),
        )
        return cls(
            client,
            upstream["models"],
            max_tokens=int(upstream["max_tokens"]),
            temperature=float(upstream["temperature"]),
            top_p=float(upstream["top_p"]),
            attempts=int(settings["retry"]["attempts"]),
            initial_delay_ms=int(settings["retry"]["initial_delay_ms"]),
            greetings=settings.get("greetings"),
            placeholder=replies["placeholder"],
            exhausted_reply=replies["exhausted"],
            greeting_reply=replies["greeting"],
            sleep=sleep,
        )

    async def fetch_reply(self, user_text: str) -> str:
        messages = [{"role": "user", "content": user_text}]
        for model in self.models:
            state = RetryState(
                retries_remaining=self.attempts,
                backoff_delay_ms=self.initial_delay_ms,
            )
            while state.retries_remaining > 0:
                logger.info(
                    "Trying model %s (%d attempts left)", model, state.retries_remaining
                )
                try:
                    payload = await asyncio.to_thread(
                        self.client.chat,
                        model=model,
                        messages=messages,
                        max_tokens=self.max_tokens,
                        temperature=self.temperature,
                        top_p=self.top_p,
                    )
                    reply = extract_reply(payload, self.placeholder)
                except RateLimitError as exc:
                    logger.warning(
                        "Rate limit hit for %s (status=%s body=%s). Retrying in %.1f seconds.",
                        model,
                        exc.status_code,
                        exc.body,
                        state.backoff_delay_ms / 1000,
                    )
                    await self._sleep(state.backoff_delay_ms / 1000)
                    state.escalate()
                    state.consume()
                    continue
                except CompletionError as exc:
                    logger.error(
                        "Error with model %s (status=%s): %s", model, exc.status_code, exc
                    )
                    state.consume()
                    continue
                except Exception:
                    logger.exception("Unexpected failure with model %s", model)
                    state.consume()
                    continue

                logger.info("Reply received from %s (%d chars)", model, len(reply))
                if is_greeting(user_text, self.greetings):
                    logger.debug("Greeting detected, returning canned reply.")
                    return self.greeting_reply
                return reply
            logger.warning("Model %s exhausted its retry budget.", model)

        logger.error("All %d models failed to respond.", len(self.models))
        return self.exhausted_reply
