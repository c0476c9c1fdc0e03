from __future__ import annotations

from unittest.mock import AsyncMock, patch

import httpx
import openai
import pytest

from app.ai.backoff import MAX_RETRIES, retry_with_backoff


def _status_error(status_code: int, headers: dict[str, str] | None = None) -> openai.APIStatusError:
  response = httpx.Response(status_code, headers=headers or {}, request=httpx.Request("POST", "https://api.openai.test/v1/chat/completions"))
  return openai.APIStatusError(f"status {status_code}", response=response, body=None)


@pytest.mark.anyio
async def test_rate_limit_waits_for_retry_after() -> None:
  func = AsyncMock(side_effect=[_status_error(429, {"retry-after": "2"}), "ok"])
  with patch("app.ai.backoff.asyncio.sleep", new=AsyncMock()) as sleep:
    assert await retry_with_backoff(func, "prompt") == "ok"
  sleep.assert_awaited_once_with(2.0)
  func.assert_awaited_with("prompt")


@pytest.mark.anyio
async def test_rate_limit_without_header_uses_default_pause() -> None:
  func = AsyncMock(side_effect=[_status_error(429), "ok"])
  with patch("app.ai.backoff.asyncio.sleep", new=AsyncMock()) as sleep:
    await retry_with_backoff(func)
  sleep.assert_awaited_once_with(5.0)


@pytest.mark.anyio
async def test_server_errors_back_off_exponentially_then_make_a_final_attempt() -> None:
  func = AsyncMock(side_effect=[_status_error(503)] * MAX_RETRIES + ["ok"])
  with patch("app.ai.backoff.asyncio.sleep", new=AsyncMock()) as sleep:
    assert await retry_with_backoff(func) == "ok"
  assert [call.args[0] for call in sleep.await_args_list] == [1.0, 2.0, 4.0]
  assert func.await_count == MAX_RETRIES + 1


@pytest.mark.anyio
async def test_client_errors_are_not_retried() -> None:
  func = AsyncMock(side_effect=_status_error(400))
  with patch("app.ai.backoff.asyncio.sleep", new=AsyncMock()) as sleep, pytest.raises(openai.APIStatusError):
    await retry_with_backoff(func)
  sleep.assert_not_awaited()
  assert func.await_count == 1
