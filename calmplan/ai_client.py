"""
calmplan - Decision Service Client
OpenAI-compatible chat completion client used for strategy selection and
activity generation. Fail-fast: one attempt, hard timeout, cancellable.
"""

import asyncio
import json
import logging
import re
from typing import Dict, Any, Optional, List

from openai import AsyncOpenAI, OpenAIError

from .config import get_decision_config, DecisionServiceConfig
from .exceptions import DecisionServiceError

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are a scheduling assistant that places short wellness activities into "
    "free time in a person's day. Answer with JSON only, no prose, no markdown."
)

_FENCE_RE = re.compile(r"```(?:json)?\s*\n?")


# ============================================
# DECISION SERVICE CLIENT
# ============================================

class DecisionServiceClient:
    """
    Thin async wrapper around an OpenAI-compatible endpoint.

    Every failure mode (timeout, transport error, non-success status, empty
    answer, cancellation) surfaces as DecisionServiceError so callers only
    need one except clause before falling back.

    Usage:
        client = DecisionServiceClient()  # Uses config from .env
        text = await client.complete(prompt, timeout=15)
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        config: Optional[DecisionServiceConfig] = None
    ):
        cfg = config or get_decision_config()

        self.config = cfg
        self.base_url = base_url or cfg.api_base_url
        self.api_key = api_key or cfg.api_key
        self.model = model or cfg.model_name

        # No retries: a slow or failing service should hand over to the fallback at once
        self._client = AsyncOpenAI(
            base_url=self.base_url,
            api_key=self.api_key or "dummy-key",  # Some local LLMs don't require keys
            max_retries=0,
        )

        logger.info(f"DecisionServiceClient initialized: base_url={self.base_url}, model={self.model}")

    async def _create(self, kwargs: Dict[str, Any]) -> str:
        try:
            response = await self._client.chat.completions.create(**kwargs)
        except OpenAIError as e:
            raise DecisionServiceError(f"Decision service request failed: {e}") from e

        if not response.choices:
            raise DecisionServiceError("Decision service returned no choices")

        content = response.choices[0].message.content
        if not content or not content.strip():
            raise DecisionServiceError("Decision service returned an empty answer")
        return content

    async def complete(
        self,
        prompt: str,
        *,
        timeout: float,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> str:
        """
        Send a single-turn prompt and return the raw answer text.

        Args:
            prompt: User message
            timeout: Seconds before giving up
            temperature: Sampling temperature
            max_tokens: Maximum response tokens
            cancel_event: When set, the pending request is abandoned

        Raises:
            DecisionServiceError: on timeout, cancellation or any service failure
        """
        if cancel_event is not None and cancel_event.is_set():
            raise DecisionServiceError("Decision service call cancelled before sending")

        messages: List[Dict[str, str]] = [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": prompt},
        ]
        kwargs = {
            "model": self.model,
            "messages": messages,
            "timeout": timeout,
        }
        if temperature is not None:
            kwargs["temperature"] = temperature
        if max_tokens is not None:
            kwargs["max_tokens"] = max_tokens

        request = asyncio.ensure_future(self._create(kwargs))
        waiters = {request}
        cancel_wait = None
        if cancel_event is not None:
            cancel_wait = asyncio.ensure_future(cancel_event.wait())
            waiters.add(cancel_wait)

        try:
            done, pending = await asyncio.wait(waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in waiters:
                if not task.done():
                    task.cancel()

        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        if request not in done:
            if cancel_wait is not None and cancel_wait in done:
                raise DecisionServiceError("Decision service call cancelled")
            raise DecisionServiceError(f"Decision service timed out after {timeout}s")

        return request.result()

    async def close(self):
        await self._client.close()


# ============================================
# RESPONSE HELPERS
# ============================================

def strip_code_fences(text: str) -> str:
    """Remove markdown code block markers."""
    return _FENCE_RE.sub("", text).replace("```", "").strip()


def extract_json_object(text: str, required_key: str) -> Dict[str, Any]:
    """
    Parse a JSON object from an answer.

    Tries the whole text first, then the first flat object that mentions
    `required_key`.
    """
    cleaned = strip_code_fences(text)
    try:
        parsed = json.loads(cleaned)
        if isinstance(parsed, dict):
            return parsed
    except json.JSONDecodeError:
        pass

    pattern = re.compile(r"\{[^{}]*\"" + re.escape(required_key) + r"\"[^{}]*\}")
    match = pattern.search(cleaned)
    if match:
        try:
            return json.loads(match.group(0))
        except json.JSONDecodeError as e:
            raise DecisionServiceError(f"Embedded JSON object is malformed: {e}") from e

    raise DecisionServiceError(f"No JSON object with '{required_key}' found in response")


# ============================================
# SINGLETON INSTANCE
# ============================================

_client: Optional[DecisionServiceClient] = None


def get_decision_client() -> Optional[DecisionServiceClient]:
    """Get or create the shared client, or None when the service is disabled."""
    global _client
    if not get_decision_config().enabled:
        return None
    if _client is None:
        _client = DecisionServiceClient()
    return _client


def reset_decision_client():
    """Reset the client singleton (useful for config changes)."""
    global _client
    _client = None


async def close_decision_client():
    """Close the shared client if one was created."""
    global _client
    if _client is not None:
        await _client.close()
        _client = None
