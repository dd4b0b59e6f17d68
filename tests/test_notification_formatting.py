from __future__ import annotations

import logging

import pytest

from adapters.log_notifier import LogNotifier
from adapters.notification_formatting import format_alert, format_location, format_subject
from core.models import App, Err, Occurrence, Problem, User


def _occurrence(*, component: str = "Foo", action: str = "bar", created: bool = True) -> Occurrence:
    err = Err(
        id=1,
        problem_id=2,
        app_id=3,
        klass="Whoops",
        component=component,
        action=action,
        environment="production",
    )
    return Occurrence(err=err, problem=Problem(id=2, app_id=3, notices_count=1), created=created)


def _app(github_url: str = "") -> App:
    return App(id=3, name="Errbit", api_key="a" * 32, github_url=github_url)


def test_subject_includes_app_env_and_location() -> None:
    assert format_subject(_app(), _occurrence()) == "[Errbit][production] Whoops in Foo#bar"


def test_location_falls_back_to_present_half() -> None:
    assert format_location(_occurrence(action="")) == "Foo"
    assert format_location(_occurrence(component="", action="")) == "unknown"


def test_text_alert_mentions_repository_and_new_problem() -> None:
    body = format_alert(_app("https://github.com/jdpace/errbit"), _occurrence())
    assert "This is a new problem." in body
    assert "https://github.com/jdpace/errbit" in body


def test_html_alert_escapes_values() -> None:
    occurrence = _occurrence(component="<Foo>")
    body = format_alert(_app(), occurrence, mode="html")
    assert "&lt;Foo&gt;" in body
    assert "<Foo>" not in body


def test_unknown_format_is_rejected() -> None:
    with pytest.raises(ValueError):
        format_alert(_app(), _occurrence(), mode="markdown")


def test_log_notifier_logs_once_per_recipient(caplog) -> None:
    recipients = {User(id=1, email="b@example.com"), User(id=None, email="a@example.com")}
    with caplog.at_level(logging.INFO, logger="adapters.log_notifier"):
        LogNotifier().send(_app(), _occurrence(), recipients)

    messages = [record.getMessage() for record in caplog.records]
    assert len(messages) == 2
    assert messages[0].startswith("Alert for a@example.com")
    assert "Whoops in Foo#bar" in messages[1]
