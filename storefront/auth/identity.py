"""
Identity service adapter.

The storefront never stores credentials; it asks the hosted auth service to
sign users in and out and to resolve access tokens. ``SupabaseIdentity``
speaks GoTrue through SupabaseClient.
"""
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from storefront.utils.supabase_client import SupabaseClient


@dataclass
class IdentityUser:
    id: str
    email: str
    confirmed: bool = False
    metadata: Optional[Dict[str, Any]] = None


class IdentityService:
    """Interface consumed by SessionManager."""

    def get_user(self, access_token: str) -> IdentityUser:
        raise NotImplementedError

    def sign_in_with_password(self, email: str, password: str) -> Tuple[str, IdentityUser]:
        raise NotImplementedError

    def sign_up(self, email: str, password: str, metadata: Dict[str, Any]) -> IdentityUser:
        raise NotImplementedError

    def sign_out(self, access_token: str) -> None:
        raise NotImplementedError


def _to_user(payload: Dict[str, Any]) -> IdentityUser:
    return IdentityUser(
        id=payload["id"],
        email=payload.get("email") or "",
        confirmed=bool(payload.get("email_confirmed_at") or payload.get("confirmed_at")),
        metadata=payload.get("user_metadata") or {},
    )


class SupabaseIdentity(IdentityService):
    def __init__(self, client: SupabaseClient):
        self._client = client

    def get_user(self, access_token: str) -> IdentityUser:
        return _to_user(self._client.get_user(access_token))

    def sign_in_with_password(self, email: str, password: str) -> Tuple[str, IdentityUser]:
        session = self._client.sign_in_with_password(email, password)
        return session["access_token"], _to_user(session["user"])

    def sign_up(self, email: str, password: str, metadata: Dict[str, Any]) -> IdentityUser:
        payload = self._client.sign_up(email, password, metadata)
        # GoTrue returns the bare user when confirmation is pending, a session otherwise
        return _to_user(payload.get("user") or payload)

    def sign_out(self, access_token: str) -> None:
        self._client.sign_out(access_token)
