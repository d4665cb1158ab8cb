"""
Unit tests for calmplan/ai_client.py

Timeouts, cancellation and answer parsing helpers. No network access:
the request coroutine is replaced per test.
"""

import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock

import httpx
import pytest
from openai import APIConnectionError

from calmplan.ai_client import DecisionServiceClient, extract_json_object, strip_code_fences
from calmplan.exceptions import DecisionServiceError


@pytest.fixture
def client(decision_config):
    return DecisionServiceClient(base_url="http://localhost:9", config=decision_config)


async def _slow_request(kwargs):
    await asyncio.sleep(10)
    return "too late"


def _completion(content):
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


class TestComplete:
    """Test DecisionServiceClient.complete"""

    @pytest.mark.asyncio
    async def test_returns_answer_text(self, client):
        client._client.chat.completions.create = AsyncMock(return_value=_completion('{"ok": true}'))
        assert await client.complete("prompt", timeout=1) == '{"ok": true}'

        kwargs = client._client.chat.completions.create.call_args.kwargs
        assert kwargs["messages"][-1] == {"role": "user", "content": "prompt"}
        assert kwargs["timeout"] == 1

    @pytest.mark.asyncio
    async def test_empty_answer_is_an_error(self, client):
        client._client.chat.completions.create = AsyncMock(return_value=_completion("   "))
        with pytest.raises(DecisionServiceError):
            await client.complete("prompt", timeout=1)

    @pytest.mark.asyncio
    async def test_no_choices_is_an_error(self, client):
        client._client.chat.completions.create = AsyncMock(return_value=SimpleNamespace(choices=[]))
        with pytest.raises(DecisionServiceError):
            await client.complete("prompt", timeout=1)

    @pytest.mark.asyncio
    async def test_transport_error_is_wrapped(self, client):
        error = APIConnectionError(request=httpx.Request("POST", "http://localhost:9/chat/completions"))
        client._client.chat.completions.create = AsyncMock(side_effect=error)
        with pytest.raises(DecisionServiceError):
            await client.complete("prompt", timeout=1)

    @pytest.mark.asyncio
    async def test_timeout(self, client):
        client._create = _slow_request
        with pytest.raises(DecisionServiceError, match="timed out"):
            await client.complete("prompt", timeout=0.05)

    @pytest.mark.asyncio
    async def test_cancel_before_sending(self, client):
        client._create = AsyncMock()
        event = asyncio.Event()
        event.set()
        with pytest.raises(DecisionServiceError, match="cancelled"):
            await client.complete("prompt", timeout=5, cancel_event=event)
        client._create.assert_not_called()

    @pytest.mark.asyncio
    async def test_cancel_while_pending(self, client):
        client._create = _slow_request
        event = asyncio.Event()
        asyncio.get_running_loop().call_later(0.05, event.set)

        loop = asyncio.get_running_loop()
        started = loop.time()
        with pytest.raises(DecisionServiceError, match="cancelled"):
            await client.complete("prompt", timeout=5, cancel_event=event)
        assert loop.time() - started < 2


class TestHelpers:
    """Test answer parsing helpers"""

    def test_strip_code_fences(self):
        assert strip_code_fences('```json\n[1, 2]\n```') == "[1, 2]"
        assert strip_code_fences("[1, 2]") == "[1, 2]"

    def test_extract_whole_object(self):
        assert extract_json_object('{"count": 3}', "count") == {"count": 3}

    def test_extract_embedded_object(self):
        text = 'Here you go {"count": 3, "priority": "calm"} hope it helps'
        assert extract_json_object(text, "count")["priority"] == "calm"

    def test_missing_object(self):
        with pytest.raises(DecisionServiceError):
            extract_json_object("nothing useful", "count")
