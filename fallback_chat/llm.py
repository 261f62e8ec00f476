from __future__ import annotations

import json
from typing import Any, Dict, List, Optional

import requests


class CompletionError(RuntimeError):
    """Raised when the completion API fails or returns a malformed response."""

    def __init__(self, message: str, status_code: Optional[int] = None, body: str = "") -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class RateLimitError(CompletionError):
    """Raised when the completion API answers with HTTP 429."""


class CompletionClient:
    """
    Minimal HTTP client for an OpenAI-compatible chat completions endpoint.
    """

    def __init__(self, base_url: str, api_key: str, timeout: float = 60) -> None:
        self.base_url = base_url
        self.api_key = api_key
        self.timeout = timeout

    def chat(
        self,
        *,
        model: str,
        messages: List[Dict[str, Any]],
        max_tokens: int,
        temperature: float,
        top_p: float,
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": model,
            "messages": messages,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "top_p": top_p,
        }
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

        try:
            response = requests.post(
                self.base_url,
                headers=headers,
                data=json.dumps(payload),
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise CompletionError(f"Request to {self.base_url} failed: {exc}") from exc

        if response.status_code == 429:
            raise RateLimitError(
                f"Rate limited: {response.text}",
                status_code=response.status_code,
                body=response.text,
            )
        if response.status_code >= 400:
            raise CompletionError(
                f"Completion API returned {response.status_code}: {response.text}",
                status_code=response.status_code,
                body=response.text,
            )
        try:
            return response.json()
        except ValueError as exc:
            raise CompletionError(
                "Failed to decode completion response as JSON.",
                status_code=response.status_code,
                body=response.text,
            ) from exc


def extract_reply(payload: Any, placeholder: str) -> str:
    """
    Pull `choices[0].message.content` out of a completion payload.

    An empty choice list, or a first choice without message content, yields
    `placeholder`. A payload without a `choices` list is malformed and raises
    `CompletionError`.
    """
    if not isinstance(payload, dict):
        raise CompletionError("Completion payload is not a JSON object.")
    choices = payload.get("choices")
    if not isinstance(choices, list):
        raise CompletionError("Completion payload has no 'choices' list.")
    if not choices or not isinstance(choices[0], dict):
        return placeholder
    message = choices[0].get("message")
    if not isinstance(message, dict):
        return placeholder
    content = message.get("content")
    if not content:
        return placeholder
    return content if isinstance(content, str) else str(content)
