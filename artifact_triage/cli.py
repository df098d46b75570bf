from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Optional, TypeVar

import typer
from pydantic import ValidationError

from .models.config import CacheMode, ScanConfig
from .models.results import FileBatchResult, FilePayload, URLAnalysis
from .pipeline.runner import analyze_url_sync, scan_files_sync
from .reporting.markdown import build_summary
from .utils.normalize import InvalidInputError

app = typer.Typer(add_completion=False)
logger = logging.getLogger(__name__)

T = TypeVar("T")

_RECORD_FIELDS = set(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime", "taskName"}


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "level": record.levelname,
            "name": record.name,
            "message": record.getMessage(),
            "time": datetime.now(timezone.utc).isoformat(),
        }
        for key, value in record.__dict__.items():
            if key not in _RECORD_FIELDS and key not in payload:
                payload[key] = value
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def setup_logging(verbose: bool = False) -> None:
    # Logs go to stderr so stdout stays a clean JSON document.
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JsonFormatter())
    logging.basicConfig(level=logging.DEBUG if verbose else logging.WARNING, handlers=[handler], force=True)


def _run_guarded(func: Callable[[], T]) -> T:
    try:
        return func()
    except InvalidInputError as exc:
        typer.echo(f"invalid input: {exc}", err=True)
        code = 2
    except Exception:
        logger.exception("unhandled error")
        typer.echo("internal error", err=True)
        code = 1
    raise typer.Exit(code)


def _emit(payload: dict, out: Optional[str]) -> None:
    text = json.dumps(payload, indent=2, default=str)
    if out:
        Path(out).parent.mkdir(parents=True, exist_ok=True)
        Path(out).write_text(text, encoding="utf-8")
    typer.echo(text)


@app.command()
def url(
    target: str = typer.Option(..., "--url", help="URL to analyze; https:// is assumed when no scheme is given."),
    virustotal_key: Optional[str] = typer.Option(None, "--virustotal-key", envvar="VIRUSTOTAL_API_KEY"),
    safe_browsing_key: Optional[str] = typer.Option(None, "--safe-browsing-key", envvar="GOOGLE_SAFE_BROWSING_API_KEY"),
    timeout: float = typer.Option(10.0, "--timeout", help="Per-request HTTP timeout in seconds."),
    probe_timeout: float = typer.Option(15.0, "--probe-timeout", help="Upper bound for each probe in seconds."),
    max_fetches: int = typer.Option(5, "--max-fetches"),
    enable_rdap: bool = typer.Option(False, "--enable-rdap", help="Look up the registration date over RDAP."),
    cache: CacheMode = typer.Option(CacheMode.none, "--cache"),
    cache_dir: str = typer.Option("./.artifact-triage", "--cache-dir"),
    cache_ttl: float = typer.Option(86_400.0, "--cache-ttl", min=1, help="Seconds before a cached verdict is ignored."),
    out: Optional[str] = typer.Option(None, "--out", help="Also write the JSON result to this path."),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
) -> None:
    """Resolve a URL and score its risk."""
    setup_logging(verbose)
    config = ScanConfig(
        timeout_seconds=timeout,
        probe_timeout_seconds=probe_timeout,
        max_fetches=max_fetches,
        enable_rdap=enable_rdap,
        cache=cache,
        cache_dir=cache_dir,
        cache_ttl_seconds=cache_ttl,
        virustotal_api_key=virustotal_key,
        safe_browsing_api_key=safe_browsing_key,
    )
    logger.debug("config", extra={"config": config.redacted()})
    analysis = _run_guarded(lambda: analyze_url_sync(target, config))
    _emit(analysis.model_dump(mode="json"), out)


def _read_payloads(paths: list[Path]) -> list[FilePayload]:
    payloads = []
    for path in paths:
        if not path.is_file():
            raise InvalidInputError(f"not a file: {path}")
        payloads.append(FilePayload(filename=path.name, content=path.read_bytes()))
    return payloads


@app.command()
def scan(
    paths: list[Path] = typer.Argument(..., help="Files to scan."),
    max_archive_depth: int = typer.Option(3, "--max-archive-depth"),
    max_archive_entries: int = typer.Option(500, "--max-archive-entries"),
    max_entry_bytes: int = typer.Option(50 * 1024 * 1024, "--max-entry-bytes"),
    concurrency: int = typer.Option(4, "--concurrency", min=1),
    cache: CacheMode = typer.Option(CacheMode.none, "--cache"),
    cache_dir: str = typer.Option("./.artifact-triage", "--cache-dir"),
    cache_ttl: float = typer.Option(86_400.0, "--cache-ttl", min=1, help="Seconds before a cached verdict is ignored."),
    out: Optional[str] = typer.Option(None, "--out", help="Also write the JSON result to this path."),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
) -> None:
    """Statically scan files, archives and workbooks."""
    setup_logging(verbose)
    config = ScanConfig(
        max_archive_depth=max_archive_depth,
        max_archive_entries=max_archive_entries,
        max_entry_bytes=max_entry_bytes,
        archive_concurrency=concurrency,
        cache=cache,
        cache_dir=cache_dir,
        cache_ttl_seconds=cache_ttl,
    )
    batch = _run_guarded(lambda: scan_files_sync(_read_payloads(paths), config))
    _emit(batch.model_dump(mode="json"), out)


def _load_json(path: str) -> dict:
    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        typer.echo(f"invalid JSON: {exc}", err=True)
        raise typer.Exit(1)
    if not isinstance(data, dict):
        typer.echo("invalid JSON: expected an object", err=True)
        raise typer.Exit(1)
    return data


@app.command()
def report(
    input: str = typer.Option(..., "--input"),
    out: Optional[str] = typer.Option(None, "--out", help="Write the markdown summary to this path."),
) -> None:
    """Render a markdown summary from a saved result."""
    setup_logging()
    summary_md = build_summary(_load_json(input))
    if out:
        Path(out).write_text(summary_md, encoding="utf-8")
    typer.echo(summary_md)


@app.command()
def validate(input: str = typer.Option(..., "--input")) -> None:
    """Validate the structure of a saved result."""
    setup_logging()
    data = _load_json(input)
    model = URLAnalysis if "url" in data else FileBatchResult
    try:
        model.model_validate(data)
    except ValidationError as exc:
        typer.echo(f"invalid {model.__name__}: {exc.error_count()} error(s)", err=True)
        for error in exc.errors()[:10]:
            location = ".".join(str(part) for part in error["loc"])
            typer.echo(f"- {location}: {error['msg']}", err=True)
        raise typer.Exit(1)
    typer.echo("valid")
