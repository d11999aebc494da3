"""
Smart Campus API client.

Holds the session token issued by the OAuth callback and unwraps the
{success, message, data} envelope. A 401 means the session is gone: the token
is dropped and SessionExpired tells the caller to send the user through the
login flow again.
"""

import logging
from typing import Any, Dict, Optional

import httpx

logger = logging.getLogger(__name__)


class CampusAPIError(Exception):
    def __init__(self, status: int, message: str, payload: Any = None):
        super().__init__(message)
        self.status = status
        self.message = message
        self.payload = payload


class SessionExpired(CampusAPIError):
    """The server rejected the session token; re-authentication is required."""


class CampusClient:
    def __init__(self, base_url: str = "http://localhost:5000", token: Optional[str] = None,
                 http: Optional[httpx.Client] = None, timeout: float = 10.0):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self._http = http or httpx.Client(base_url=self.base_url, timeout=timeout)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def close(self):
        self._http.close()

    @property
    def authenticated(self) -> bool:
        return self.token is not None

    def login_url(self, role: str = "student") -> str:
        return f"{self.base_url}/auth/google/{role}"

    def accept_callback(self, token: str) -> None:
        self.token = token

    def logout(self) -> None:
        self.token = None

    def _headers(self) -> Dict[str, str]:
        if self.token:
            return {"Authorization": f"Bearer {self.token}"}
        return {}

    def request(self, method: str, path: str, **kwargs) -> Any:
        headers = {**self._headers(), **kwargs.pop("headers", {})}
        response = self._http.request(method, path, headers=headers, **kwargs)

        is_json = "application/json" in response.headers.get("content-type", "")
        payload = response.json() if is_json else None
        message = (payload or {}).get("message") or response.reason_phrase or "Request failed"

        if response.status_code == 401:
            logger.info(f"Session rejected on {method} {path}; clearing token")
            self.token = None
            raise SessionExpired(401, message, payload)
        if response.is_error or (payload is not None and payload.get("success") is False):
            raise CampusAPIError(response.status_code, message, payload)

        return payload.get("data") if payload else None

    def get(self, path: str, **kwargs) -> Any:
        return self.request("GET", path, **kwargs)

    def post(self, path: str, json: Any = None, **kwargs) -> Any:
        return self.request("POST", path, json=json, **kwargs)

    def patch(self, path: str, json: Any = None, **kwargs) -> Any:
        return self.request("PATCH", path, json=json, **kwargs)

    def delete(self, path: str, **kwargs) -> Any:
        return self.request("DELETE", path, **kwargs)

    def me(self) -> Dict[str, Any]:
        return self.get("/api/user/me")
