from __future__ import annotations

import asyncio
import hashlib
import logging
from typing import Any, Awaitable, Iterable, Optional

from ..models.config import ScanConfig
from ..models.results import FileBatchResult, FilePayload, FileScanResult, ResolvedURL, URLAnalysis
from ..modules import threat_intel, url_resolver, url_signals
from ..modules.file_scanner import ScanSession, scan_file
from ..modules.recommendations import url_recommendations
from ..modules.risk import UrlSignals, assess_url_risk
from ..utils.cache import file_cache_key, url_cache_key
from ..utils.normalize import InvalidInputError, host_of, is_ip_literal, normalize_url
from .context import RequestContext

logger = logging.getLogger(__name__)


async def _probe(name: str, coro: Awaitable[Any], default: Any, timeout: float, errors: dict[str, str]) -> Any:
    try:
        return await asyncio.wait_for(coro, timeout)
    except asyncio.TimeoutError:
        errors[name] = f"timed out after {timeout:g}s"
        logger.warning("probe timed out", extra={"probe": name, "timeout": timeout})
    except Exception as exc:
        errors[name] = str(exc) or type(exc).__name__
        logger.warning("probe failed", extra={"probe": name, "error": errors[name]})
    return default


async def _with_context(config: Optional[ScanConfig], context: Optional[RequestContext], func):
    if context is not None:
        return await func(context)
    context = RequestContext.build(config or ScanConfig())
    try:
        return await func(context)
    finally:
        await context.close()


async def _analyze_url(url: str, context: RequestContext) -> URLAnalysis:
    config = context.config
    http = context.http_client
    timeout = config.probe_timeout_seconds
    errors: dict[str, str] = {}

    resolved, ssl, verdict, listed, age, short_target = await asyncio.gather(
        _probe(
            "resolve",
            url_resolver.resolve(url, http, config.max_fetches, config.max_title_bytes),
            ResolvedURL(original=url, final_url=url),
            timeout,
            errors,
        ),
        _probe("ssl", url_signals.check_ssl(url, http), False, timeout, errors),
        _probe(
            "virustotal",
            threat_intel.check_virustotal(url, config.virustotal_api_key, http),
            threat_intel.IntelVerdict(),
            timeout,
            errors,
        ),
        _probe(
            "safe_browsing",
            threat_intel.check_safe_browsing(url, config.safe_browsing_api_key, http),
            False,
            timeout,
            errors,
        ),
        _probe("domain_age", url_signals.domain_age(url, http, config.enable_rdap), None, timeout, errors),
        _probe("shortener", url_signals.resolve_short_url(url, http), None, timeout, errors),
    )

    host = host_of(url)
    patterns = url_signals.find_suspicious_patterns(url, resolved.page_title)
    signals = UrlSignals(
        ssl=ssl,
        ip_address=is_ip_literal(host),
        url_shortener=url_signals.is_shortener(host),
        suspicious_patterns=tuple(patterns),
        domain_age_days=age,
        malware_detected=verdict.malware or listed,
        phishing_detected=verdict.phishing,
        redirect_count=len(resolved.redirect_chain),
        response_ms=resolved.elapsed_ms,
    )
    analysis = URLAnalysis(
        url=url,
        resolved=resolved,
        ssl=signals.ssl,
        ip_address=signals.ip_address,
        url_shortener=signals.url_shortener,
        shortened_url_resolved=short_target,
        suspicious_patterns=patterns,
        domain_age_days=age,
        malware_detected=signals.malware_detected,
        phishing_detected=signals.phishing_detected,
        assessment=assess_url_risk(signals),
        probe_errors=errors,
    )
    analysis.recommendations = url_recommendations(analysis)
    return analysis


async def analyze_url(
    raw_url: str, config: Optional[ScanConfig] = None, context: Optional[RequestContext] = None
) -> URLAnalysis:
    url = normalize_url(raw_url)

    async def _run(ctx: RequestContext) -> URLAnalysis:
        key = url_cache_key(url)
        if ctx.cache:
            cached = ctx.cache.get(key)
            if cached:
                logger.debug("cache hit", extra={"key": key})
                return URLAnalysis.model_validate(cached)
        analysis = await _analyze_url(url, ctx)
        if ctx.cache:
            ctx.cache.set(key, analysis.model_dump(mode="json"))
        logger.info(
            "url analyzed",
            extra={"url": url, "score": analysis.assessment.score, "level": analysis.assessment.level.value},
        )
        return analysis

    return await _with_context(config, context, _run)


async def _scan_payload(payload: FilePayload, context: RequestContext, session: ScanSession) -> FileScanResult:
    key = file_cache_key(hashlib.sha256(payload.content).hexdigest(), payload.filename)
    if context.cache:
        cached = context.cache.get(key)
        if cached:
            logger.debug("cache hit", extra={"key": key})
            return FileScanResult.model_validate(cached)
    result = await scan_file(payload.filename, payload.content, session=session)
    if context.cache:
        context.cache.set(key, result.model_dump(mode="json"))
    return result


async def scan_files(
    payloads: Iterable[FilePayload], config: Optional[ScanConfig] = None, context: Optional[RequestContext] = None
) -> FileBatchResult:
    items = list(payloads)
    if not items:
        raise InvalidInputError("no files to scan")
    for item in items:
        if not item.filename.strip():
            raise InvalidInputError("every file needs a filename")

    async def _run(ctx: RequestContext) -> FileBatchResult:
        session = ctx.new_session()
        results = await asyncio.gather(*(_scan_payload(item, ctx, session) for item in items))
        return FileBatchResult(results=list(results))

    return await _with_context(config, context, _run)


def analyze_url_sync(raw_url: str, config: Optional[ScanConfig] = None) -> URLAnalysis:
    return asyncio.run(analyze_url(raw_url, config))


def scan_files_sync(payloads: Iterable[FilePayload], config: Optional[ScanConfig] = None) -> FileBatchResult:
    return asyncio.run(scan_files(payloads, config))
