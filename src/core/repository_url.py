"""Source repository URL helpers.

Normalization is best effort: GitHub URLs in SSH, http or https form are
rewritten to ``https://github.com/OWNER/REPO``, anything else is returned
unchanged.
"""

from __future__ import annotations

import re

from core.models import App

GITHUB_BASE = "https://github.com/"
DEFAULT_BRANCH = "master"

_GITHUB_PATTERNS = (
    re.compile(r"^git@github\.com:(?P<path>[^/\s:]+/[^/\s]+?)(?:\.git)?/?$"),
    re.compile(r"^https?://github\.com/(?P<path>[^/\s]+/[^/\s]+?)(?:\.git)?/?$"),
)


def normalize(url: str) -> str:
    """Return the canonical https form of a GitHub url, or the url unchanged."""

    if not url or not url.strip():
        return ""

    candidate = url.strip()
    for pattern in _GITHUB_PATTERNS:
        match = pattern.match(candidate)
        if match:
            return f"{GITHUB_BASE}{match.group('path')}"
    return url


def has_repository(app: App) -> bool:
    return bool(app.github_url)


def file_url(app: App, path: str) -> str:
    """Link to ``path`` on the default branch of the App's repository."""

    if not has_repository(app):
        raise ValueError(f"App {app.name!r} has no repository url")
    return f"{app.github_url}/blob/{DEFAULT_BRANCH}/{path.lstrip('/')}"
