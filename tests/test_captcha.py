from urllib.parse import parse_qs

import httpx
import pytest

from nano_faucet.services.captcha import RecaptchaValidator


def validator(handler):
    return RecaptchaValidator("s3cret", verify_url="http://captcha.test/siteverify",
                              transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_valid_token_passes():
    sent = []

    def handler(request):
        sent.append(parse_qs(request.content.decode()))
        return httpx.Response(200, json={"success": True})

    result = await validator(handler).verify("token-1")

    assert result.success
    assert sent == [{"secret": ["s3cret"], "response": ["token-1"]}]


@pytest.mark.asyncio
async def test_rejected_token_reports_errors():
    result = await validator(
        lambda request: httpx.Response(200, json={"success": False, "error-codes": ["timeout-or-duplicate"]})
    ).verify("token-1")

    assert not result.success
    assert result.errors == ["timeout-or-duplicate"]


@pytest.mark.asyncio
async def test_unreachable_service_fails_closed():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    result = await validator(handler).verify("token-1")

    assert not result.success


@pytest.mark.asyncio
async def test_empty_token_is_not_sent():
    calls = []

    result = await validator(lambda request: calls.append(request)).verify("")

    assert not result.success
    assert calls == []
