import base64

import pytest

from app.core.errors import UpstreamProtocolError
from app.models import AggregatedTraffic
from app.services.delivery import (
    build_page_context,
    compose_subscription_payload,
    decode_subscription_payload,
    format_bytes,
    format_expiry,
    is_browser_request,
)

from conftest import b64


def _decode(s):
    return base64.b64decode(s).decode("utf-8")


@pytest.mark.parametrize("ua", [
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0 Safari/537.36",
    "Chrome",
    "Opera/9.80",
    "something WebKit something",
])
def test_browser_agents(ua):
    assert is_browser_request(ua) is True


@pytest.mark.parametrize("ua", ["curl/8.0", "v2rayNG/1.8.5", "", None, "chrome", "mozilla/5.0"])
def test_automated_agents(ua):
    assert is_browser_request(ua) is False


def test_backup_line_is_prepended():
    text = "vless://a@h:443#one\nvmess://xyz"
    out = compose_subscription_payload(b64(text), "vless://backup@b:443#backup")
    assert _decode(out) == "vless://backup@b:443#backup\n" + text


def test_empty_backup_keeps_text_unchanged():
    text = "trojan://pw@h:443#Ω"
    raw = b64(text)
    out = compose_subscription_payload(raw, "")
    assert _decode(out) == text
    assert out == raw


def test_empty_content_with_backup_yields_backup_only():
    assert _decode(compose_subscription_payload("", "ss://backup")) == "ss://backup"


def test_lenient_decoding():
    text = "vless://a@h:443"
    raw = b64(text).rstrip("=")
    wrapped = raw[:8] + "\n" + raw[8:]
    assert decode_subscription_payload(wrapped) == text


def test_invalid_base64_is_protocol_error():
    with pytest.raises(UpstreamProtocolError):
        decode_subscription_payload("a")


def test_format_bytes():
    assert format_bytes(0) == "0 B"
    assert format_bytes(1023) == "1023 B"
    assert format_bytes(1024) == "1.00 KB"
    assert format_bytes(1536 * 1024 * 1024) == "1.50 GB"
    assert format_bytes(-2048) == "-2.00 KB"
    assert format_bytes("junk") == "0 B"


def test_format_expiry():
    assert format_expiry(0) == "∞"
    assert format_expiry(-86400000) == "∞"
    assert format_expiry(1767225600000) == "2026-01-01"


def test_page_context(cfg):
    agg = AggregatedTraffic(
        total_up=1, total_down=2, total_used=3, total_limit=0, remaining=-3,
        usage_percent=0, expiry_time=0, enabled=True, inbound_count=1,
        inbound_remarks=["DE"], clients=[],
    )
    ctx = build_page_context(cfg, agg, "cGF5bG9hZA==", "https://gw.test/sub/u1")
    data = ctx["data"]
    assert data["suburl"] == "https://gw.test/sub/u1"
    assert data["suburl_content"] == "cGF5bG9hZA=="
    assert data["totalLimitText"] == "∞"
    assert data["remainingText"] == "∞"
    assert data["expiryDate"] == "∞"
    assert data["inboundRemarks"] == ["DE"]
