from __future__ import annotations

from ..models.results import FileScanResult, RiskLevel, SpreadsheetScanResult, URLAnalysis


def url_recommendations(analysis: URLAnalysis) -> list[str]:
    recs: list[str] = []
    if not analysis.ssl:
        recs.append("The site does not use HTTPS; do not submit personal information.")
    if analysis.ip_address:
        recs.append("Sites addressed by a raw IP address are highly suspicious.")
    if analysis.url_shortener:
        recs.append("A URL shortener hides the real destination.")
        if analysis.shortened_url_resolved:
            recs.append(f"Actual destination: {analysis.shortened_url_resolved}")
    if analysis.malware_detected:
        recs.append("Malware was reported for this URL. Do not visit it.")
    if analysis.phishing_detected:
        recs.append("Suspected phishing site. Never enter credentials or personal data.")
    redirects = len(analysis.resolved.redirect_chain)
    if redirects:
        recs.append(f"The URL redirected {redirects} time(s) before the final page.")
    if analysis.suspicious_patterns:
        recs.append(f"{len(analysis.suspicious_patterns)} suspicious URL pattern(s) matched.")
    if analysis.domain_age_days is not None and analysis.domain_age_days < 30:
        recs.append("Recently registered domain; phishing sites are often short-lived.")
    if analysis.resolved.elapsed_ms > 5000:
        recs.append("The server responded very slowly.")
    status = analysis.resolved.status_code
    if status is not None and status >= 400:
        recs.append(f"The server answered with HTTP {status}.")

    level = analysis.assessment.level
    if level == RiskLevel.high:
        recs.append("This site looks dangerous. Visiting it is strongly discouraged.")
    elif level == RiskLevel.medium:
        recs.append("Visit with caution and avoid entering personal information.")
    else:
        recs.append("No significant risk signals were found.")
    return recs


def spreadsheet_recommendations(scan: SpreadsheetScanResult) -> list[str]:
    recs: list[str] = []
    if scan.has_macros:
        recs.append("The workbook carries macros. Do not enable them; open it in Protected View first.")
    if scan.has_formula_injection:
        recs.append("DDE or formula-injection patterns found. Disable DDE and external content in the spreadsheet application.")
    if scan.has_shell_command_pattern:
        recs.append("Shell command patterns found. Quarantine the file and report it to your security team.")
    if scan.has_external_links:
        recs.append("External links present. Disable automatic link updates and verify the linked sources.")
    if scan.has_hidden_sheets or scan.has_hidden_cell_ranges:
        recs.append("Hidden sheets, rows or columns present. Unhide them to review their contents.")
    if scan.has_embedded_objects:
        recs.append("Embedded objects present. Do not double-click them.")
    if scan.parse_error:
        recs.append("The workbook could not be parsed; treat it as untrusted.")
    return recs


def file_recommendations(result: FileScanResult) -> list[str]:
    recs: list[str] = []
    level = result.assessment.level
    if level in (RiskLevel.critical, RiskLevel.high):
        recs.append("Multiple risk indicators were found. Do not open or run this file.")
        recs.append("Confirm where the file came from and fetch it again from a trusted source.")
        if result.malware_detected:
            recs.append("Run a full antivirus scan on any system that received this file.")
    elif level == RiskLevel.medium:
        recs.append("Some risk indicators were found. Handle this file with care.")
        recs.append("Double-check that the file comes from a source you trust.")
    else:
        recs.append("No significant risk was found by the static checks.")
        recs.append("Stay cautious with files from unknown sources.")

    rule_ids = {f.rule_id for f in result.findings}
    if "file.executable_in_archive" in rule_ids:
        recs.append("The archive contains executables. Review its contents before extracting.")
    if "file.double_extension" in rule_ids:
        recs.append("Double extensions are a common disguise. Check the real file type.")
    if rule_ids & {"file.pe_confirmed", "file.pe_spoofed_extension", "file.pe_decoy_extension", "file.pe_in_archive"}:
        recs.append("This file is a Windows executable. Do not run it unless the source is certain.")
    if result.is_archive and any(entry.malware_detected for entry in result.archive_entries or []):
        recs.append("The archive contains files flagged as malware.")
    if result.is_archive and result.archive_entries is None:
        recs.append("The archive could not be fully inspected; treat its contents as untrusted.")
    if result.spreadsheet_findings is not None:
        recs.extend(spreadsheet_recommendations(result.spreadsheet_findings))
    return recs
