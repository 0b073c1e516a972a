"""
Admin authentication for the HTTP surface.

Bearer tokens are validated against Supabase's ``/auth/v1/user`` endpoint;
only the user whose email matches ``ADMIN_EMAIL`` is admitted.
"""

import logging
from functools import wraps
from typing import Any, Dict, Optional

import requests
from flask import current_app, jsonify, request

from .constants import DEFAULT_NETWORK_TIMEOUT

logger = logging.getLogger(__name__)


class SupabaseIdentityProvider:
    """Resolves access tokens to Supabase users."""

    def __init__(self, url: str, anon_key: str, timeout: float = DEFAULT_NETWORK_TIMEOUT):
        self.url = url.rstrip("/")
        self.anon_key = anon_key
        self.timeout = timeout

    def get_user(self, token: str) -> Optional[Dict[str, Any]]:
        """
        Look up the user owning ``token``.

        Returns:
            User dict, or None when the token is invalid or the lookup fails
        """
        headers = {
            "apikey": self.anon_key,
            "Authorization": f"Bearer {token}",
        }
        try:
            r = requests.get(f"{self.url}/auth/v1/user", headers=headers, timeout=self.timeout)
        except requests.RequestException as e:
            logger.warning("Identity lookup failed: %s", e)
            return None

        if r.status_code != 200:
            return None
        try:
            return r.json()
        except ValueError:
            return None


def bearer_token() -> Optional[str]:
    header = request.headers.get("Authorization", "")
    if not header.startswith("Bearer "):
        return None
    return header[len("Bearer "):].strip() or None


def is_admin(provider: Optional[SupabaseIdentityProvider], admin_email: Optional[str]) -> bool:
    if provider is None or not admin_email:
        return False
    token = bearer_token()
    if not token:
        return False
    user = provider.get_user(token)
    return bool(user) and user.get("email") == admin_email


def require_admin(view):
    """Reject the request with 401 unless it carries an admin token."""
    @wraps(view)
    def wrapper(*args, **kwargs):
        provider = current_app.extensions.get("identity_provider")
        admin_email = current_app.config["BRIDGE"].admin_email
        if not is_admin(provider, admin_email):
            return jsonify({"error": "Unauthorized"}), 401
        return view(*args, **kwargs)
    return wrapper
