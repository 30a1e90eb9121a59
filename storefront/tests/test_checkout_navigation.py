"""Tests for reserved navigation targets and return URL handling."""

from urllib.parse import parse_qsl, urlsplit

import pytest

from storefront.features.checkout.navigation import RedirectTarget, reserved_navigation
from storefront.features.checkout.returns import content_return_urls, parse_return, strip_return_params


@pytest.mark.asyncio
async def test_target_filled_after_async_call():
    async with reserved_navigation(RedirectTarget) as target:
        target.navigate("https://checkout.example/cs_1")
    assert target.url == "https://checkout.example/cs_1"
    assert target.closed is False


@pytest.mark.asyncio
async def test_target_closed_on_error():
    with pytest.raises(RuntimeError):
        async with reserved_navigation(RedirectTarget) as target:
            raise RuntimeError("session creation failed")
    assert target.closed is True
    assert target.navigated is False


@pytest.mark.asyncio
async def test_unused_target_closed():
    async with reserved_navigation(RedirectTarget) as target:
        pass
    assert target.closed is True


def test_closed_target_cannot_navigate():
    target = RedirectTarget()
    target.close()
    with pytest.raises(RuntimeError):
        target.navigate("https://checkout.example")


def test_parse_content_success():
    ret = parse_return({"content_purchase": "success", "video_id": "video3", "session_id": "cs_9"})
    assert ret.kind == "content"
    assert ret.status == "success"
    assert ret.video_id == "video3"
    assert ret.replay_key == "return:cs_9"


def test_parse_membership_cancel():
    ret = parse_return({"membership": "canceled"})
    assert ret.kind == "membership"
    assert ret.status == "canceled"
    assert ret.replay_key is None


def test_parse_without_indicator():
    assert parse_return({"ref": "twitter"}) is None
    assert parse_return({"membership": "maybe"}) is None


def test_strip_return_params_keeps_unrelated_query():
    url = "https://shop.example.com/profile1?content_purchase=success&video_id=video3&session_id=cs_1&ref=x"
    assert strip_return_params(url) == "https://shop.example.com/profile1?ref=x"


def test_strip_return_params_without_query():
    assert strip_return_params("https://shop.example.com/profile1?membership=success") == "https://shop.example.com/profile1"


def test_content_return_url_escapes_item_id():
    success, cancel = content_return_urls("https://shop.example.com", "profile1", "clip 1&x=#2")
    assert success == (
        "https://shop.example.com/profile1?content_purchase=success&video_id=clip+1%26x%3D%232"
        "&session_id={CHECKOUT_SESSION_ID}"
    )
    ret = parse_return(dict(parse_qsl(urlsplit(success).query)))
    assert ret.video_id == "clip 1&x=#2"
    assert cancel == "https://shop.example.com/profile1?content_purchase=canceled"
