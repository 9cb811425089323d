"""Identity and email collaborators: error translation and wire format."""

import json
from unittest.mock import MagicMock, patch

import httpx
import pytest

from datacop_api.context import request_id_var
from datacop_api.errors import DuplicateEmail, IdentityProviderError
from datacop_api.services.email import HttpEmailSender, notify
from datacop_api.services.identity import SupabaseIdentityProvider


class AuthError(Exception):
    """Shape of the Supabase auth SDK error (status + code attributes)."""

    def __init__(self, message: str, status: int, code: str = ""):
        super().__init__(message)
        self.status = status
        self.code = code


class TestSupabaseIdentityProvider:
    def test_create_returns_uid_and_confirms_email(self):
        client = MagicMock()
        client.auth.admin.create_user.return_value = MagicMock(user=MagicMock(id="uid_1"))

        uid = SupabaseIdentityProvider(client).create_identity("a@x.com", "pw-123456", {"role": "user"})

        assert uid == "uid_1"
        payload = client.auth.admin.create_user.call_args.args[0]
        assert payload["email_confirm"] is True
        assert payload["user_metadata"] == {"role": "user"}

    @pytest.mark.parametrize(
        "error",
        [
            AuthError("User already registered", 422, "email_exists"),
            AuthError("A user with this email address has already been registered", 422),
        ],
    )
    def test_duplicate_email_is_translated(self, error):
        client = MagicMock()
        client.auth.admin.create_user.side_effect = error
        with pytest.raises(DuplicateEmail):
            SupabaseIdentityProvider(client).create_identity("a@x.com", "pw-123456")

    def test_other_create_failures_are_provider_errors(self):
        client = MagicMock()
        client.auth.admin.create_user.side_effect = AuthError("upstream", 500)
        with pytest.raises(IdentityProviderError):
            SupabaseIdentityProvider(client).create_identity("a@x.com", "pw-123456")

    def test_delete_missing_identity_returns_false(self):
        client = MagicMock()
        client.auth.admin.delete_user.side_effect = AuthError("User not found", 404, "user_not_found")
        assert SupabaseIdentityProvider(client).delete_identity("uid_1") is False

    def test_delete_failure_raises(self):
        client = MagicMock()
        client.auth.admin.delete_user.side_effect = AuthError("timeout", 504)
        with pytest.raises(IdentityProviderError):
            SupabaseIdentityProvider(client).delete_identity("uid_1")

    def test_delete_success(self):
        client = MagicMock()
        assert SupabaseIdentityProvider(client).delete_identity("uid_1") is True
        client.auth.admin.delete_user.assert_called_once_with("uid_1")


@pytest.fixture
def mock_http():
    """Route HttpEmailSender traffic to a handler; returns the captured requests."""
    captured: list[httpx.Request] = []
    status = {"code": 202}
    real_client = httpx.Client

    def handler(request: httpx.Request) -> httpx.Response:
        captured.append(request)
        return httpx.Response(status["code"], json={})

    def client_factory(**kwargs):
        return real_client(transport=httpx.MockTransport(handler), **kwargs)

    with patch("datacop_api.services.email.httpx.Client", side_effect=client_factory):
        yield captured, status


class TestHttpEmailSender:
    def test_posts_template_payload(self, mock_http):
        captured, _ = mock_http
        token = request_id_var.set("req-email-1")
        try:
            sender = HttpEmailSender("https://mail.internal/", token="svc-token")
            sender.send_templated_email("user_invitation", "a@x.com", {"invitation_link": "https://p/x"})
        finally:
            request_id_var.reset(token)

        request = captured[0]
        assert str(request.url) == "https://mail.internal/send"
        assert request.headers["Authorization"] == "Bearer svc-token"
        assert request.headers["X-Request-ID"] == "req-email-1"
        assert json.loads(request.content) == {
            "type": "user_invitation",
            "to": "a@x.com",
            "variables": {"invitation_link": "https://p/x"},
        }

    def test_error_status_raises(self, mock_http):
        _, status = mock_http
        status["code"] = 500
        with pytest.raises(httpx.HTTPStatusError):
            HttpEmailSender("https://mail.internal").send_templated_email("user_invitation", "a@x.com", {})

    def test_notify_swallows_delivery_failure(self, mock_http):
        _, status = mock_http
        status["code"] = 503
        assert notify(HttpEmailSender("https://mail.internal"), "user_invitation", "a@x.com", {}) is False
