import pytest

from artifact_triage.utils.normalize import (
    InvalidInputError,
    host_of,
    is_ip_literal,
    normalize_url,
    sanitize_headers,
)


def test_normalize_prefixes_https_and_lowercases_host():
    assert normalize_url("  Example.COM/Path?q=1 ") == "https://example.com/Path?q=1"
    assert normalize_url("http://example.com") == "http://example.com/"


@pytest.mark.parametrize("raw", ["", "   ", "ftp://example.com", "http://", "https://exa mple.com", "https://bad..host"])
def test_normalize_rejects_malformed_input(raw):
    with pytest.raises(InvalidInputError):
        normalize_url(raw)


def test_invalid_input_is_a_value_error():
    with pytest.raises(ValueError):
        normalize_url("javascript:alert(1)")


def test_ip_literal_detection():
    assert is_ip_literal("192.168.10.5")
    assert is_ip_literal("[2001:db8::1]")
    assert not is_ip_literal("example.com")
    assert host_of("https://192.168.10.5:8443/x") == "192.168.10.5"


def test_sanitize_headers_lowercases_and_redacts():
    headers = sanitize_headers({"Set-Cookie": "sid=1", "Content-Type": "text/html"})
    assert headers == {"set-cookie": "[redacted]", "content-type": "text/html"}
