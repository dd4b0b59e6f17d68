from __future__ import annotations

import pytest

from core.models import App
from core.repository_url import file_url, has_repository, normalize


def _app(github_url: str) -> App:
    return App(id=1, name="Errbit", api_key="a" * 32, github_url=github_url)


def test_blank_url_stays_blank() -> None:
    assert normalize("") == ""
    assert normalize("   ") == ""


def test_https_url_is_untouched_and_idempotent() -> None:
    url = "https://github.com/jdpace/errbit"
    assert normalize(url) == url
    assert normalize(normalize(url)) == url


def test_http_url_is_upgraded_to_https() -> None:
    assert normalize("http://github.com/jdpace/errbit") == "https://github.com/jdpace/errbit"


def test_git_suffix_is_stripped() -> None:
    assert normalize("https://github.com/jdpace/errbit.git") == "https://github.com/jdpace/errbit"
    assert normalize("http://github.com/jdpace/errbit.git") == "https://github.com/jdpace/errbit"


def test_ssh_url_becomes_https() -> None:
    assert normalize("git@github.com:jdpace/errbit.git") == "https://github.com/jdpace/errbit"
    assert normalize("git@github.com:jdpace/errbit") == "https://github.com/jdpace/errbit"


def test_trailing_slash_is_dropped() -> None:
    assert normalize("https://github.com/jdpace/errbit/") == "https://github.com/jdpace/errbit"


def test_unrecognized_urls_pass_through() -> None:
    for url in (
        "https://gitlab.com/jdpace/errbit.git",
        "not a url",
        "https://github.com/jdpace",
        "https://github.com/jdpace/errbit/tree/main",
    ):
        assert normalize(url) == url


def test_file_url_joins_path_under_master() -> None:
    app = _app("https://github.com/jdpace/errbit")
    assert file_url(app, "/path/to/file") == "https://github.com/jdpace/errbit/blob/master/path/to/file"
    assert file_url(app, "path/to/file") == "https://github.com/jdpace/errbit/blob/master/path/to/file"


def test_file_url_requires_repository() -> None:
    with pytest.raises(ValueError):
        file_url(_app(""), "/path/to/file")


def test_has_repository() -> None:
    assert has_repository(_app("https://github.com/jdpace/errbit"))
    assert not has_repository(_app(""))
