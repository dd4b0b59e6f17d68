"""Shared notification formatting helpers.

Keeping formatting here prevents drift between adapters and keeps alerts
consistent regardless of delivery channel.
"""

from __future__ import annotations

import html

from core.models import App, Occurrence
from core.repository_url import has_repository

DIVIDER = "──────────────"


def format_location(occurrence: Occurrence) -> str:
    """Return ``component#action`` or whichever half is present."""

    err = occurrence.err
    if err.component and err.action:
        return f"{err.component}#{err.action}"
    return err.component or err.action or "unknown"


def format_subject(app: App, occurrence: Occurrence) -> str:
    err = occurrence.err
    env = f"[{err.environment}]" if err.environment else ""
    return f"[{app.name}]{env} {err.klass} in {format_location(occurrence)}"


def _format_text(app: App, occurrence: Occurrence) -> str:
    problem = occurrence.problem
    lines = [
        format_subject(app, occurrence),
        DIVIDER,
        f"Error:       {occurrence.err.klass}",
        f"Where:       {format_location(occurrence)}",
        f"Environment: {occurrence.err.environment or '-'}",
        f"Occurrences: {problem.notices_count}",
    ]
    if occurrence.created:
        lines.append("This is a new problem.")
    if has_repository(app):
        lines.extend(["", f"Repository:  {app.github_url}"])
    lines.append(DIVIDER)
    return "\n".join(lines)


def _format_html(app: App, occurrence: Occurrence) -> str:
    problem = occurrence.problem
    parts = [
        f"<b>{html.escape(format_subject(app, occurrence))}</b>",
        DIVIDER,
        f"<b>Error:</b> {html.escape(occurrence.err.klass)}",
        f"<b>Where:</b> {html.escape(format_location(occurrence))}",
        f"<b>Environment:</b> {html.escape(occurrence.err.environment or '-')}",
        f"<b>Occurrences:</b> {problem.notices_count}",
    ]
    if occurrence.created:
        parts.append("<i>This is a new problem.</i>")
    if has_repository(app):
        safe_link = html.escape(app.github_url)
        parts.extend(["", "<b>Repository:</b>", f"<a href=\"{safe_link}\">{safe_link}</a>"])
    parts.append(DIVIDER)
    return "\n".join(parts)


def format_alert(app: App, occurrence: Occurrence, mode: str = "text") -> str:
    """Return the alert body formatted for the requested mode."""

    if mode == "text":
        return _format_text(app, occurrence)
    if mode == "html":
        return _format_html(app, occurrence)
    raise ValueError(f"Unsupported notification format: {mode}")
