"""HTTP client for the OpenRouter-compatible chat completion API."""

import logging
import time
from collections.abc import Callable
from typing import Any, TypeVar

import requests

from ..core.config import CompletionConfig
from .errors import (
    CompletionError,
    CompletionNetworkError,
    CompletionRateLimitError,
    CompletionResponseError,
    CompletionValidationError,
    error_from_response,
)

T = TypeVar("T")

VALID_ROLES = ("system", "user", "assistant")
OPTIONAL_PARAMS = ("temperature", "max_tokens", "top_p", "frequency_penalty", "presence_penalty")


class CompletionClient:
    """Chat completion client with bounded timeout and retry on transient failures.

    Transient failures (network errors, timeouts, 429 and 5xx responses) are
    retried with exponential backoff until ``max_retries`` attempts have been
    made. Anything else is raised on the first attempt.
    """

    def __init__(
        self,
        config: CompletionConfig,
        session: requests.Session | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        config.validate_settings()
        self.config = config
        self.base_url = config.base_url.rstrip("/")
        self.session = session or requests.Session()
        self._sleep = sleep

    @property
    def default_model(self) -> str:
        return self.config.default_model

    def chat(
        self,
        messages: list[dict[str, str]],
        model: str | None = None,
        response_format: dict[str, Any] | None = None,
        **params: Any,
    ) -> dict[str, Any]:
        """Run a non-streaming chat completion and return the parsed response body."""
        self.validate_messages(messages)
        if response_format is not None and not self.validate_response_format(response_format):
            raise CompletionValidationError(
                "Invalid response_format structure",
                ["response_format must follow the json_schema pattern with strict: true"],
            )

        payload = self._build_payload(messages, model, response_format, params)
        return self._execute_with_retry(lambda: self._parse_response(self._post("/chat/completions", payload)))

    def close(self) -> None:
        self.session.close()

    @staticmethod
    def validate_messages(messages: list[dict[str, str]]) -> None:
        """Reject message lists the API would refuse."""
        if not messages:
            raise CompletionValidationError(
                "Messages array cannot be empty", ["messages: array must contain at least one message"]
            )

        system_count = 0
        user_count = 0
        for index, message in enumerate(messages):
            role = message.get("role")
            if role not in VALID_ROLES:
                raise CompletionValidationError(
                    f"Invalid message role at index {index}",
                    [f"message[{index}].role must be one of: {', '.join(VALID_ROLES)}"],
                )
            content = message.get("content")
            if not isinstance(content, str) or not content.strip():
                raise CompletionValidationError(
                    f"Empty message content at index {index}", [f"message[{index}].content cannot be empty"]
                )
            if role == "system":
                system_count += 1
            elif role == "user":
                user_count += 1

        if system_count > 1:
            raise CompletionValidationError("Multiple system messages not allowed")
        if system_count == 1 and messages[0]["role"] != "system":
            raise CompletionValidationError("System message must be first")
        if user_count == 0:
            raise CompletionValidationError("At least one user message required")

    @staticmethod
    def validate_response_format(response_format: dict[str, Any]) -> bool:
        if response_format.get("type") != "json_schema":
            return False

        json_schema = response_format.get("json_schema")
        if not isinstance(json_schema, dict):
            return False
        if not isinstance(json_schema.get("name"), str) or not json_schema["name"]:
            return False
        if json_schema.get("strict") is not True:
            return False

        schema = json_schema.get("schema")
        if not isinstance(schema, dict) or schema.get("type") != "object":
            return False
        if not isinstance(schema.get("properties"), dict):
            return False

        if schema.get("additionalProperties") is not False:
            logging.warning("Consider setting additionalProperties: false for strict schema validation")

        return True

    def _build_payload(
        self,
        messages: list[dict[str, str]],
        model: str | None,
        response_format: dict[str, Any] | None,
        params: dict[str, Any],
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {"messages": messages, "model": model or self.config.default_model}
        if response_format is not None:
            payload["response_format"] = response_format
        for key in OPTIONAL_PARAMS:
            if params.get(key) is not None:
                payload[key] = params[key]
        return payload

    def _post(self, path: str, payload: dict[str, Any]) -> Any:
        headers = {
            "Authorization": f"Bearer {self.config.api_key.strip()}",
            "Content-Type": "application/json",
            "X-Title": self.config.app_name,
        }

        try:
            response = self.session.post(
                f"{self.base_url}{path}", json=payload, headers=headers, timeout=self.config.timeout_seconds
            )
        except requests.Timeout as e:
            raise CompletionNetworkError(f"Request timed out after {self.config.timeout_seconds}s") from e
        except requests.ConnectionError as e:
            raise CompletionNetworkError(f"Network error: {e}") from e
        except requests.RequestException as e:
            raise CompletionNetworkError(f"Request failed: {e}") from e

        try:
            body = response.json()
        except ValueError:
            body = None

        if not response.ok:
            raise error_from_response(response.status_code, body, response.headers.get("Retry-After"))

        if body is None:
            raise CompletionResponseError("Response body is not valid JSON", response.text[:200])

        return body

    @staticmethod
    def _parse_response(raw: Any) -> dict[str, Any]:
        """Check the completion envelope and return it unchanged."""
        if not isinstance(raw, dict):
            raise CompletionResponseError("Invalid response: expected object", raw)

        choices = raw.get("choices")
        if not isinstance(choices, list) or not choices:
            raise CompletionResponseError("Invalid response: missing or empty choices array", raw)

        first = choices[0]
        message = first.get("message") if isinstance(first, dict) else None
        if not isinstance(message, dict) or not isinstance(message.get("content"), str):
            raise CompletionResponseError("Invalid response: invalid message structure", raw)

        usage = raw.get("usage")
        if usage is not None and not isinstance(usage, dict):
            raise CompletionResponseError("Invalid response: invalid usage field", raw)

        return raw

    def _execute_with_retry(self, fn: Callable[[], T]) -> T:
        attempts = max(1, self.config.max_retries)
        last_error: CompletionError | None = None

        for attempt in range(attempts):
            try:
                return fn()
            except CompletionError as e:
                if not e.retryable:
                    raise
                last_error = e

            if attempt == attempts - 1:
                break

            delay = self.config.retry_backoff_seconds * (2**attempt)
            if isinstance(last_error, CompletionRateLimitError) and last_error.retry_after:
                delay = max(delay, last_error.retry_after)

            logging.warning(
                "Completion request failed (attempt %d/%d), retrying in %.2fs: %s",
                attempt + 1,
                attempts,
                delay,
                last_error.message,
            )
            self._sleep(delay)

        assert last_error is not None
        raise last_error
