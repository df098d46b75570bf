from __future__ import annotations

from datetime import datetime, timezone


def _bullets(lines: list[str], items: list[str], empty: str) -> None:
    if not items:
        lines.append(f"- {empty}")
    for item in items:
        lines.append(f"- {item}")


def build_url_summary(analysis: dict) -> list[str]:
    assessment = analysis.get("assessment", {})
    resolved = analysis.get("resolved", {})
    lines = [f"## URL: {analysis.get('url')}", ""]
    lines.append(f"- Risk: {assessment.get('level', 'n/a')} ({assessment.get('score', 'n/a')}/10)")
    lines.append(f"- Final URL: {resolved.get('final_url', 'n/a')}")
    lines.append(f"- Status: {resolved.get('status_code') or 'n/a'}")
    lines.append(f"- Redirects: {len(resolved.get('redirect_chain', []))}")
    if resolved.get("page_title"):
        lines.append(f"- Page title: {resolved['page_title']}")
    lines.append("")

    lines.append("### Contributing factors")
    _bullets(lines, assessment.get("contributing_factors", []), "None.")
    lines.append("")
    if analysis.get("probe_errors"):
        lines.append("### Degraded probes")
        for name, error in analysis["probe_errors"].items():
            lines.append(f"- {name}: {error}")
        lines.append("")
    lines.append("### Recommendations")
    _bullets(lines, analysis.get("recommendations", []), "No recommendations.")
    return lines


def build_file_summary(result: dict, depth: int = 0) -> list[str]:
    assessment = result.get("assessment", {})
    heading = "#" * min(2 + depth, 6)
    lines = [f"{heading} File: {result.get('filename')}", ""]
    lines.append(f"- Risk: {assessment.get('level', 'n/a')} ({assessment.get('score', 'n/a')}/20)")
    lines.append(f"- Type: .{result.get('declared_extension') or '?'} declared, {result.get('sniffed_type', 'unknown')} sniffed")
    lines.append(f"- SHA-256: {result.get('digests', {}).get('sha256', 'n/a')}")
    if result.get("malware_detected"):
        lines.append(f"- Malware indicators: {', '.join(result.get('malware_indicators', []))}")
    lines.append("")

    lines.append("Findings:")
    _bullets(lines, result.get("suspicious_patterns", []), "No suspicious patterns.")
    lines.append("")
    if depth == 0:
        lines.append("Recommendations:")
        _bullets(lines, result.get("recommendations", []), "No recommendations.")
        lines.append("")

    for entry in result.get("archive_entries") or []:
        lines.extend(build_file_summary(entry, depth + 1))
    return lines


def build_summary(findings: dict) -> str:
    lines = ["# Artifact Triage Summary", "", f"Generated: {datetime.now(timezone.utc).isoformat()}", ""]
    if "url" in findings:
        lines.extend(build_url_summary(findings))
    elif "results" in findings:
        for result in findings["results"]:
            lines.extend(build_file_summary(result))
    else:
        lines.append("- Nothing to report.")
    return "\n".join(lines).rstrip() + "\n"
