import asyncio
from datetime import datetime, timezone

import httpx

from artifact_triage.modules.url_signals import (
    _registrable_domain,
    check_ssl,
    domain_age,
    lookup_rdap_age,
    resolve_short_url,
)
from artifact_triage.utils.http import HttpClient


def _run(handler, probe):
    async def main():
        http = HttpClient(transport=httpx.MockTransport(handler))
        try:
            return await probe(http)
        finally:
            await http.close()

    return asyncio.run(main())


def test_ssl_probe_requires_https_and_a_healthy_answer():
    assert _run(lambda r: httpx.Response(200), lambda h: check_ssl("https://example.com/", h)) is True
    assert _run(lambda r: httpx.Response(503), lambda h: check_ssl("https://example.com/", h)) is False
    assert _run(lambda r: httpx.Response(200), lambda h: check_ssl("http://example.com/", h)) is False


def test_ssl_probe_handshake_failure():
    def handler(request):
        raise httpx.ConnectError("certificate verify failed", request=request)

    assert _run(handler, lambda h: check_ssl("https://example.com/", h)) is False


def test_short_url_target_resolved_relative_to_origin():
    def handler(request):
        return httpx.Response(302, headers={"location": "/landing"})

    assert _run(handler, lambda h: resolve_short_url("https://bit.ly/x", h)) == "https://bit.ly/landing"
    assert _run(handler, lambda h: resolve_short_url("https://example.com/x", h)) is None


def test_rdap_registration_age():
    def handler(request):
        assert request.url.path == "/domain/example.com"
        events = [
            {"eventAction": "last changed", "eventDate": "2024-01-05T00:00:00Z"},
            {"eventAction": "registration", "eventDate": "2024-01-01T00:00:00Z"},
        ]
        return httpx.Response(200, json={"events": events})

    now = datetime(2024, 1, 11, tzinfo=timezone.utc)
    assert _run(handler, lambda h: lookup_rdap_age("www.sub.example.com", h, now=now)) == 10


def test_rdap_failure_falls_back_to_heuristic():
    def handler(request):
        return httpx.Response(404)

    assert _run(handler, lambda h: domain_age("https://github.com/", h, enable_rdap=True)) == 5000
    assert _run(handler, lambda h: lookup_rdap_age("example.com", h)) is None


def test_rdap_queries_the_registrable_domain_under_multi_label_suffixes():
    seen = []

    def handler(request):
        seen.append(request.url.path)
        return httpx.Response(404)

    assert _registrable_domain("login.example.co.uk") == "example.co.uk"
    assert _registrable_domain("localhost") == ""
    _run(handler, lambda h: lookup_rdap_age("login.example.co.uk", h))
    assert seen == ["/domain/example.co.uk"]
