import httpx
from typing import Any, Dict, Optional

from storefront.core.errors import BackendError
from storefront.utils.logger import get_logger, kv

logger = get_logger("utils.supabase_client")


class SupabaseClient:
    """
    Lightweight client for the hosted Supabase REST surfaces the storefront
    consumes directly: GoTrue auth (``/auth/v1``) and storage (``/storage/v1``).
    Row reads and writes go through SQLAlchemy instead.

    Any transport failure or non-2xx response raises BackendError carrying the
    service's own message.
    """
    def __init__(self, url: Optional[str] = None, key: Optional[str] = None,
                 http_client: Optional[httpx.Client] = None):
        self.url = (url or "").rstrip("/")
        self.key = key or ""

        if not self.url or not self.key:
            logger.warning("SUPABASE_URL or SUPABASE_KEY not set in environment.")

        self.headers = {
            "apikey": self.key,
            "Authorization": f"Bearer {self.key}",
            "Content-Type": "application/json",
        }
        self.client = http_client or httpx.Client(base_url=self.url, headers=self.headers, timeout=30.0)

    def _request(self, method: str, path: str, token: Optional[str] = None, **kwargs) -> httpx.Response:
        headers = dict(kwargs.pop("headers", None) or {})
        headers.setdefault("apikey", self.key)
        if token:
            headers["Authorization"] = f"Bearer {token}"
        try:
            response = self.client.request(method, path, headers=headers, **kwargs)
        except httpx.HTTPError as e:
            logger.error("supabase: %s", kv(method=method, path=path, result="error", error=e))
            raise BackendError(str(e)) from e
        if response.is_error:
            message = _error_message(response)
            logger.error("supabase: %s", kv(method=method, path=path, status=response.status_code, error=message))
            raise BackendError(message, {"status_code": response.status_code})
        return response

    # -- auth ----------------------------------------------------------------

    def get_user(self, access_token: str) -> Dict[str, Any]:
        """Resolve an access token to its auth user record."""
        return self._request("GET", "/auth/v1/user", token=access_token).json()

    def sign_in_with_password(self, email: str, password: str) -> Dict[str, Any]:
        """Password grant. Returns the session payload (access_token, user, ...)."""
        return self._request(
            "POST",
            "/auth/v1/token",
            params={"grant_type": "password"},
            json={"email": email, "password": password},
        ).json()

    def sign_up(self, email: str, password: str, metadata: Dict[str, Any]) -> Dict[str, Any]:
        return self._request(
            "POST",
            "/auth/v1/signup",
            json={"email": email, "password": password, "data": metadata},
        ).json()

    def sign_out(self, access_token: str) -> None:
        self._request("POST", "/auth/v1/logout", token=access_token)

    # -- storage -------------------------------------------------------------

    def upload(self, bucket: str, path: str, content: bytes, content_type: str, upsert: bool = False) -> None:
        self._request(
            "POST",
            f"/storage/v1/object/{bucket}/{path}",
            content=content,
            headers={"Content-Type": content_type, "x-upsert": "true" if upsert else "false"},
        )

    def public_url(self, bucket: str, path: str) -> str:
        return f"{self.url}/storage/v1/object/public/{bucket}/{path}"


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    if isinstance(body, dict):
        for key in ("msg", "message", "error_description", "error"):
            if body.get(key):
                return str(body[key])
    return f"HTTP {response.status_code}"
