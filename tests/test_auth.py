from unittest.mock import MagicMock, patch

import pytest
import requests

from shared.auth import SupabaseIdentityProvider


@pytest.fixture
def provider():
    return SupabaseIdentityProvider("https://project.supabase.co/", "anon-key", timeout=5)


def _response(status, payload=None):
    response = MagicMock(status_code=status)
    response.json.return_value = payload
    return response


def test_get_user_sends_token_and_key(provider):
    with patch("shared.auth.requests.get", return_value=_response(200, {"email": "a@b.c"})) as get:
        user = provider.get_user("tok")

    assert user == {"email": "a@b.c"}
    get.assert_called_once_with(
        "https://project.supabase.co/auth/v1/user",
        headers={"apikey": "anon-key", "Authorization": "Bearer tok"},
        timeout=5,
    )


def test_rejected_token(provider):
    with patch("shared.auth.requests.get", return_value=_response(401, {"msg": "bad jwt"})):
        assert provider.get_user("tok") is None


def test_network_failure(provider):
    with patch("shared.auth.requests.get", side_effect=requests.ConnectionError("down")):
        assert provider.get_user("tok") is None


def test_malformed_body(provider):
    response = _response(200)
    response.json.side_effect = ValueError("not json")
    with patch("shared.auth.requests.get", return_value=response):
        assert provider.get_user("tok") is None
