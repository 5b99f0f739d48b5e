"""Tests for webhook notification delivery."""

from decimal import Decimal
from unittest.mock import MagicMock, patch

import httpx
import pytest

from splitledger.models import UserProfile
from splitledger.notifications import NotificationDispatcher

BOB = UserProfile(id="bob", display_name="Bob", email="bob@example.com")


@pytest.fixture
def dispatcher():
    """Dispatcher pointed at a test webhook."""
    dispatcher = NotificationDispatcher(webhook_url="https://hooks.example.com/ledger")
    yield dispatcher
    dispatcher.close()


@pytest.fixture
def mock_client():
    """Patch httpx.Client used by the dispatcher."""
    with patch("splitledger.notifications.httpx.Client") as client_cls:
        client = MagicMock()
        client_cls.return_value.__enter__.return_value = client
        yield client


class TestNotify:
    """Test synchronous delivery."""

    def test_posts_event(self, dispatcher, mock_client):
        """A successful post reports True."""
        assert dispatcher.notify("expense_added", BOB, {"expense_id": 3})

        url = mock_client.post.call_args.args[0]
        body = mock_client.post.call_args.kwargs["json"]
        assert url == "https://hooks.example.com/ledger"
        assert body["kind"] == "expense_added"
        assert body["recipient"]["id"] == "bob"
        assert body["payload"] == {"expense_id": 3}
        mock_client.post.return_value.raise_for_status.assert_called_once()

    def test_non_json_values_are_stringified(self, dispatcher, mock_client):
        """Decimals and other values are sent as strings."""
        dispatcher.notify("settlement_received", BOB, {"amount": Decimal("12.50")})

        body = mock_client.post.call_args.kwargs["json"]
        assert body["payload"]["amount"] == "12.50"

    def test_http_error_reports_false(self, dispatcher, mock_client):
        """Delivery failures are logged and reported, never raised."""
        mock_client.post.side_effect = httpx.ConnectError("refused")

        assert dispatcher.notify("expense_added", BOB, {}) is False

    def test_bad_status_reports_false(self, dispatcher, mock_client):
        """Non-2xx responses count as failures."""
        request = httpx.Request("POST", "https://hooks.example.com/ledger")
        response = httpx.Response(500, request=request)
        mock_client.post.return_value = response

        assert dispatcher.notify("expense_added", BOB, {}) is False

    def test_without_webhook_nothing_is_sent(self, mock_client):
        """Delivery is disabled when no webhook is configured."""
        with NotificationDispatcher() as dispatcher:
            assert dispatcher.notify("expense_added", BOB, {}) is False
        mock_client.post.assert_not_called()


class TestDispatch:
    """Test background delivery."""

    def test_dispatch_runs_in_background(self, dispatcher, mock_client):
        """dispatch returns a future with the delivery result."""
        future = dispatcher.dispatch("expense_added", BOB, {"expense_id": 1})

        assert future.result(timeout=5) is True
        mock_client.post.assert_called_once()

    def test_dispatch_failure_does_not_raise(self, dispatcher, mock_client):
        """Failures stay inside the future's result."""
        mock_client.post.side_effect = httpx.ReadTimeout("slow")

        future = dispatcher.dispatch("expense_added", BOB, {})
        assert future.result(timeout=5) is False
