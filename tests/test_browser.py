"""Tests for the browser host helpers."""

from __future__ import annotations

from orgwatch.auth.browser import (
    OAUTH_ERROR,
    OAUTH_SUCCESS,
    ScreenGeometry,
    SubscriptionSet,
    WindowMessage,
    close_quietly,
    parse_oauth_message,
    popup_features,
)
from orgwatch.auth.types import LoginOutcome


ORIGIN = "http://localhost:3000"


class TestPopupFeatures:
    """Centred popup geometry."""

    def test_centred_on_opener(self) -> None:
        features = popup_features(ScreenGeometry(0, 0, 1280, 800))
        assert features.startswith("width=600,height=700,left=340,top=50,")

    def test_offset_opener_and_custom_size(self) -> None:
        features = popup_features(ScreenGeometry(1920, 100, 1000, 700), width=500, height=600)
        assert "width=500,height=600,left=2170,top=150" in features
        assert "toolbar=no" in features


class TestParseOAuthMessage:
    """Origin and shape filtering."""

    def test_success(self) -> None:
        result = parse_oauth_message(WindowMessage(ORIGIN, {"type": OAUTH_SUCCESS}), ORIGIN)
        assert result.success
        assert result.via == "message"

    def test_error_with_message(self) -> None:
        result = parse_oauth_message(
            WindowMessage(ORIGIN, {"type": OAUTH_ERROR, "error": "Token exchange failed"}), ORIGIN
        )
        assert result.outcome is LoginOutcome.ERROR
        assert result.error == "Token exchange failed"

    def test_error_without_message_gets_default(self) -> None:
        result = parse_oauth_message(WindowMessage(ORIGIN, {"type": OAUTH_ERROR}), ORIGIN)
        assert result.error == "Authentication failed"

    def test_ignored_messages(self) -> None:
        ignored = [
            WindowMessage("https://evil.example.com", {"type": OAUTH_SUCCESS}),
            WindowMessage(ORIGIN, {"type": "webpackOk"}),
            WindowMessage(ORIGIN, "oauth_success"),
            WindowMessage(ORIGIN, None),
        ]
        for message in ignored:
            assert parse_oauth_message(message, ORIGIN) is None


class TestSubscriptionSet:
    """Teardown collection."""

    def test_close_runs_each_teardown_once_in_reverse(self) -> None:
        order: list[int] = []
        subs = SubscriptionSet()
        subs.add(lambda: order.append(1))
        subs.add(lambda: order.append(2))
        assert len(subs) == 2

        subs.close()
        subs.close()

        assert order == [2, 1]
        assert subs.closed
        assert len(subs) == 0

    def test_late_add_is_released_immediately(self) -> None:
        released: list[str] = []
        subs = SubscriptionSet()
        subs.close()

        subs.add(lambda: released.append("late"))

        assert released == ["late"]

    def test_failing_teardown_does_not_block_others(self) -> None:
        released: list[str] = []
        subs = SubscriptionSet()
        subs.add(lambda: released.append("first"))

        def broken() -> None:
            raise RuntimeError("listener already removed")

        subs.add(broken)
        subs.close()

        assert released == ["first"]


class TestCloseQuietly:
    """Popup closing tolerates closed and missing handles."""

    def test_closes_open_popup(self, host) -> None:
        popup = host.open_popup("https://x", "n", "")
        close_quietly(popup)
        assert popup.close_calls == 1

    def test_skips_closed_or_missing(self, host) -> None:
        popup = host.open_popup("https://x", "n", "")
        popup.user_close()
        close_quietly(popup)
        close_quietly(None)
        assert popup.close_calls == 0
