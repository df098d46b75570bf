import asyncio

from artifact_triage.modules.threat_intel import (
    IntelVerdict,
    check_safe_browsing,
    check_virustotal,
    virustotal_url_id,
)


class _Resp:
    def __init__(self, status_code=200, payload=None):
        self.status_code = status_code
        self._payload = payload

    def json(self):
        if self._payload is None:
            raise ValueError("no payload")
        return self._payload


class _Http:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.calls = []

    async def get(self, url, **kwargs):
        self.calls.append(("GET", url, kwargs))
        if self.error:
            raise self.error
        return self.response

    async def post(self, url, **kwargs):
        self.calls.append(("POST", url, kwargs))
        if self.error:
            raise self.error
        return self.response


def test_unconfigured_adapters_make_no_calls():
    http = _Http()
    assert asyncio.run(check_virustotal("https://example.com/", None, http)) == IntelVerdict()
    assert asyncio.run(check_safe_browsing("https://example.com/", "", http)) is False
    assert http.calls == []


def test_virustotal_stats_map_to_verdicts():
    payload = {"data": {"attributes": {"last_analysis_stats": {"malicious": 1, "suspicious": 3}}}}
    http = _Http(_Resp(payload=payload))
    verdict = asyncio.run(check_virustotal("https://example.com/", "key", http))
    assert verdict == IntelVerdict(malware=True, phishing=True)
    method, url, kwargs = http.calls[0]
    assert url.endswith(virustotal_url_id("https://example.com/"))
    assert kwargs["headers"] == {"x-apikey": "key"}


def test_virustotal_two_suspicious_engines_is_not_phishing():
    payload = {"data": {"attributes": {"last_analysis_stats": {"malicious": 0, "suspicious": 2}}}}
    verdict = asyncio.run(check_virustotal("https://example.com/", "key", _Http(_Resp(payload=payload))))
    assert verdict == IntelVerdict()


def test_virustotal_errors_are_benign():
    assert asyncio.run(check_virustotal("https://e.com/", "key", _Http(error=RuntimeError("down")))) == IntelVerdict()
    assert asyncio.run(check_virustotal("https://e.com/", "key", _Http(_Resp(status_code=404)))) == IntelVerdict()
    assert asyncio.run(check_virustotal("https://e.com/", "key", _Http(_Resp()))) == IntelVerdict()


def test_safe_browsing_match_and_request_shape():
    http = _Http(_Resp(payload={"matches": [{"threatType": "MALWARE"}]}))
    assert asyncio.run(check_safe_browsing("https://evil.example/", "key", http)) is True
    method, url, kwargs = http.calls[0]
    assert method == "POST"
    assert url.endswith("?key=key")
    assert kwargs["json"]["threatInfo"]["threatEntries"] == [{"url": "https://evil.example/"}]


def test_safe_browsing_empty_and_errors():
    assert asyncio.run(check_safe_browsing("https://e.com/", "key", _Http(_Resp(payload={})))) is False
    assert asyncio.run(check_safe_browsing("https://e.com/", "key", _Http(error=OSError("reset")))) is False


def test_virustotal_url_id_is_unpadded_urlsafe_base64():
    assert virustotal_url_id("https://example.com/") == "aHR0cHM6Ly9leGFtcGxlLmNvbS8"
