"""Tests for the shared HTTP client."""

from unittest.mock import patch, MagicMock

import pytest
import requests

from common.cancellation import CancellationToken
from common.errors import MalformedResponseError, RepositoryTransportError, ResolutionCancelled
from common.http_client import HttpClient


def _response(status=200, text="", headers=None):
    resp = MagicMock()
    resp.status_code = status
    resp.text = text
    resp.headers = headers or {}
    return resp


def _client(*responses):
    session = MagicMock()
    session.headers = {}
    session.get.side_effect = list(responses)
    return HttpClient(repository="TestRepo", session=session), session


class TestGet:
    """Test raw GET behaviour and retries."""

    def test_sets_user_agent_and_base_headers(self):
        """Test base headers land on the session."""
        client, session = _client(_response())
        assert "User-Agent" in session.headers
        client2 = HttpClient(repository="r", session=MagicMock(headers={}), headers={"X-A": "1"})
        assert client2._session.headers["X-A"] == "1"
        client.close()
        session.close.assert_called_once()

    def test_returns_status_headers_and_text(self):
        """Test a successful GET."""
        client, session = _client(_response(200, "body", {"Content-Type": "text/plain"}))
        status, headers, text = client.get("https://example.test/a", headers={"Accept": "x"})
        assert status == 200
        assert headers["Content-Type"] == "text/plain"
        assert text == "body"
        assert session.get.call_args.kwargs["headers"] == {"Accept": "x"}

    @patch("common.http_client.time.sleep")
    def test_retries_after_timeout(self, mock_sleep):
        """Test transport failures are retried with backoff."""
        client, session = _client(requests.Timeout(), _response(200, "ok"))
        status, _, text = client.get("https://example.test/a")
        assert (status, text) == (200, "ok")
        assert session.get.call_count == 2
        mock_sleep.assert_called_once()

    @patch("common.http_client.time.sleep")
    def test_raises_after_all_attempts_fail(self, mock_sleep):
        """Test exhausted retries raise a transport error."""
        failures = [requests.ConnectionError("refused")] * 10
        client, session = _client(*failures)
        with pytest.raises(RepositoryTransportError, match="refused"):
            client.get("https://example.test/a")
        assert session.get.call_count >= 1

    def test_cancelled_before_request(self):
        """Test a cancelled token stops the request from being sent."""
        client, session = _client(_response())
        token = CancellationToken()
        token.cancel()
        with pytest.raises(ResolutionCancelled):
            client.get("https://example.test/a", cancel=token)
        session.get.assert_not_called()

    @patch("common.http_client.time.sleep")
    def test_error_message_hides_credentials(self, mock_sleep):
        """Test masked URL in the raised message."""
        client, _ = _client(*([requests.ConnectionError("x")] * 10))
        with pytest.raises(RepositoryTransportError) as exc_info:
            client.get("https://user:pw@example.test/a?apikey=abc")
        assert "abc" not in str(exc_info.value)
        assert "pw@" not in str(exc_info.value)


class TestStatusMapping:
    """Test status code handling in get_text/get_json."""

    def test_not_found_is_none(self):
        """Test 404 means no result rather than an error."""
        client, _ = _client(_response(404))
        assert client.get_text("https://example.test/a") is None

    @pytest.mark.parametrize("status", [401, 403])
    def test_unauthorized(self, status):
        """Test auth failures raise with the status code."""
        client, _ = _client(_response(status))
        with pytest.raises(RepositoryTransportError, match="Unauthorized") as exc_info:
            client.get_text("https://example.test/a")
        assert exc_info.value.status_code == status

    def test_server_error(self):
        """Test 5xx raises a transport error."""
        client, _ = _client(_response(500))
        with pytest.raises(RepositoryTransportError) as exc_info:
            client.get_text("https://example.test/a")
        assert exc_info.value.status_code == 500

    def test_get_json_parses(self):
        """Test JSON decoding and default Accept header."""
        client, session = _client(_response(200, '{"a": 1}'))
        assert client.get_json("https://example.test/a") == {"a": 1}
        assert session.get.call_args.kwargs["headers"]["Accept"] == "application/json"

    def test_get_json_not_found(self):
        """Test 404 passes through as None."""
        client, _ = _client(_response(404))
        assert client.get_json("https://example.test/a") is None

    def test_get_json_invalid(self):
        """Test invalid JSON raises MalformedResponseError."""
        client, _ = _client(_response(200, "<html>"))
        with pytest.raises(MalformedResponseError):
            client.get_json("https://example.test/a")
