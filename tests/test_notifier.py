"""Tests for notifiers."""
from __future__ import annotations

import json
from datetime import datetime, timezone

import httpx
import pytest

from bracketbot.config import Settings
from bracketbot.notify.base import LogNotifier, format_session_summary, format_trade_close
from bracketbot.notify.line import LineNotifier, make_notifier

from conftest import make_position


def _line(handler) -> LineNotifier:
    return LineNotifier(
        channel_token="chan_token",
        user_id="U42",
        transport=httpx.MockTransport(handler),
    )


class TestMessageFormats:
    """Tests for the fixed message templates."""

    def test_trade_close_message(self):
        now = datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
        position = make_position(side="short", pnl=-500.0)

        text = format_trade_close(position, now=now)

        assert text.endswith(": Closed short position with -500.0 pnl.")

    def test_session_summary_totals_pnl(self):
        start = datetime(2024, 1, 2, 3, 0, 0, tzinfo=timezone.utc)
        now = datetime(2024, 1, 2, 4, 0, 0, tzinfo=timezone.utc)
        positions = [make_position(id=1, pnl=250.0), make_position(id=2, pnl=-100.0)]

        text = format_session_summary(start, positions, now=now)

        assert text.startswith("Duration: ")
        assert " ~ " in text
        assert text.splitlines()[1] == "Total pnl: 150.0"

    def test_session_summary_empty(self):
        start = datetime(2024, 1, 2, 3, 0, 0, tzinfo=timezone.utc)

        text = format_session_summary(start, [])

        assert text.splitlines()[1] == "Total pnl: 0"


class TestLineNotifier:
    """Tests for LINE push delivery."""

    def test_push_payload(self):
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json={})

        notifier = _line(handler)

        assert notifier.send_alert("hello") is True

        request = requests[0]
        assert request.url.path == "/v2/bot/message/push"
        assert request.headers["Authorization"] == "Bearer chan_token"
        assert json.loads(request.content) == {
            "to": "U42",
            "messages": [{"type": "text", "text": "hello"}],
        }

    def test_rejected_push_is_swallowed(self):
        notifier = _line(lambda request: httpx.Response(401, json={"message": "Authentication failed"}))

        assert notifier.report_trade_close(make_position(pnl=1.0)) is False

    def test_report_session_summary(self):
        texts: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            texts.append(json.loads(request.content)["messages"][0]["text"])
            return httpx.Response(200, json={})

        notifier = _line(handler)
        start = datetime(2024, 1, 2, 3, 0, 0, tzinfo=timezone.utc)

        notifier.report_session_summary(start, [make_position(pnl=-500.0), make_position(id=2, pnl=200.0)])

        assert texts[0].endswith("Total pnl: -300.0")

    def test_requires_credentials(self):
        with pytest.raises(ValueError, match="required"):
            LineNotifier(channel_token="", user_id="U42")


class TestMakeNotifier:
    """Tests for notifier selection."""

    def test_line_when_configured(self):
        notifier = make_notifier(Settings(line_channel_token="tok", line_user_id="U1"))
        try:
            assert isinstance(notifier, LineNotifier)
        finally:
            notifier.close()

    def test_log_fallback(self):
        notifier = make_notifier(Settings(line_channel_token="", line_user_id=""))

        assert isinstance(notifier, LogNotifier)
        assert notifier.send_alert("offline") is True
