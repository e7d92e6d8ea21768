"""
Credential service abstraction.

Password verification and session issuance live in a hosted auth service
(Supabase GoTrue in production). The in-memory implementation mirrors its
behavior closely enough for development and tests.
"""

from __future__ import annotations

import hashlib
import secrets
import time
import uuid
from dataclasses import dataclass, field
from typing import Dict, Optional, Protocol

import requests

RATE_LIMITED = 429


class CredentialError(Exception):
    """
    Raised when the credential service rejects or fails a call.

    ``caller_caused`` is True for rejections attributable to the request
    (bad password, duplicate e-mail, invalid token) and False for outages.
    """

    def __init__(self, message: str, *, caller_caused: bool = True, status: int | None = None):
        super().__init__(message)
        self.message = message
        self.caller_caused = caller_caused
        self.status = status


@dataclass
class CredentialUser:
    id: str
    email: str


@dataclass
class CredentialSession:
    access_token: str
    refresh_token: Optional[str] = None
    expires_at: Optional[int] = None
    token_type: str = "bearer"

    def as_dict(self) -> dict:
        return {
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "expires_at": self.expires_at,
            "token_type": self.token_type,
        }


@dataclass
class CredentialResult:
    user: CredentialUser
    session: Optional[CredentialSession] = None


class CredentialService(Protocol):
    """Operations the API needs from the auth service."""

    def sign_up(self, email: str, password: str) -> CredentialResult:
        ...

    def sign_in(self, email: str, password: str) -> CredentialResult:
        ...

    def get_user(self, access_token: str) -> CredentialUser:
        ...

    def update_email(self, user_id: str, email: str) -> None:
        ...

    def delete_user(self, user_id: str) -> None:
        ...


def _hash_password(password: str, salt: str) -> str:
    return hashlib.sha256(f"{salt}:{password}".encode("utf-8")).hexdigest()


@dataclass
class _StoredCredential:
    user: CredentialUser
    salt: str
    password_hash: str


@dataclass
class InMemoryCredentialService:
    """Test double for the hosted auth service."""

    session_ttl_seconds: int = 3600
    users: Dict[str, _StoredCredential] = field(default_factory=dict)
    tokens: Dict[str, str] = field(default_factory=dict)
    sign_in_calls: int = 0

    def reset(self) -> None:
        self.users.clear()
        self.tokens.clear()
        self.sign_in_calls = 0

    def _issue_session(self, user: CredentialUser) -> CredentialSession:
        token = secrets.token_urlsafe(24)
        self.tokens[token] = user.id
        return CredentialSession(
            access_token=token,
            refresh_token=secrets.token_urlsafe(24),
            expires_at=int(time.time()) + self.session_ttl_seconds,
        )

    def sign_up(self, email: str, password: str) -> CredentialResult:
        key = email.casefold()
        if key in self.users:
            raise CredentialError("User already registered", status=422)
        if len(password) < 6:
            raise CredentialError("Password should be at least 6 characters", status=422)
        salt = secrets.token_hex(8)
        user = CredentialUser(id=str(uuid.uuid4()), email=email)
        self.users[key] = _StoredCredential(user, salt, _hash_password(password, salt))
        return CredentialResult(user=user, session=self._issue_session(user))

    def sign_in(self, email: str, password: str) -> CredentialResult:
        self.sign_in_calls += 1
        stored = self.users.get(email.casefold())
        if not stored or stored.password_hash != _hash_password(password, stored.salt):
            raise CredentialError("Invalid login credentials", status=400)
        return CredentialResult(user=stored.user, session=self._issue_session(stored.user))

    def get_user(self, access_token: str) -> CredentialUser:
        user_id = self.tokens.get(access_token)
        if user_id is None:
            raise CredentialError("Invalid token", status=401)
        for stored in self.users.values():
            if stored.user.id == user_id:
                return stored.user
        raise CredentialError("User not found", status=404)

    def update_email(self, user_id: str, email: str) -> None:
        key = email.casefold()
        current = next(
            (k for k, stored in self.users.items() if stored.user.id == user_id), None
        )
        if current is None:
            raise CredentialError("User not found", status=404)
        if key != current and key in self.users:
            raise CredentialError("Email address already registered", status=422)
        stored = self.users.pop(current)
        stored.user = CredentialUser(id=user_id, email=email)
        self.users[key] = stored

    def delete_user(self, user_id: str) -> None:
        for key, stored in list(self.users.items()):
            if stored.user.id == user_id:
                del self.users[key]
        for token, owner in list(self.tokens.items()):
            if owner == user_id:
                del self.tokens[token]


@dataclass
class SupabaseCredentialService:
    """
    Client for the Supabase GoTrue REST API.
    """

    url: str
    anon_key: str
    service_role_key: Optional[str] = None
    timeout: float = 10.0

    def __post_init__(self):
        self.url = self.url.rstrip("/")
        self._session = requests.Session()

    def _headers(self, bearer: Optional[str] = None, *, admin: bool = False) -> dict:
        key = self.service_role_key if admin else self.anon_key
        headers = {"apikey": key, "Content-Type": "application/json"}
        if admin:
            headers["Authorization"] = f"Bearer {key}"
        elif bearer:
            headers["Authorization"] = f"Bearer {bearer}"
        return headers

    def _request(self, method: str, path: str, **kwargs) -> dict:
        try:
            response = self._session.request(
                method, f"{self.url}/auth/v1{path}", timeout=self.timeout, **kwargs
            )
        except requests.RequestException as exc:
            raise CredentialError(
                f"Auth service unreachable: {exc}", caller_caused=False
            ) from exc
        if response.status_code >= 400:
            raise CredentialError(
                _error_message(response),
                caller_caused=_is_caller_caused(response.status_code),
                status=response.status_code,
            )
        if not response.content:
            return {}
        return response.json()

    def sign_up(self, email: str, password: str) -> CredentialResult:
        payload = self._request(
            "POST",
            "/signup",
            json={"email": email, "password": password},
            headers=self._headers(),
        )
        # With e-mail confirmation enabled the API returns the bare user.
        if "access_token" in payload:
            return _parse_session_payload(payload)
        return CredentialResult(user=_parse_user(payload), session=None)

    def sign_in(self, email: str, password: str) -> CredentialResult:
        payload = self._request(
            "POST",
            "/token",
            params={"grant_type": "password"},
            json={"email": email, "password": password},
            headers=self._headers(),
        )
        return _parse_session_payload(payload)

    def get_user(self, access_token: str) -> CredentialUser:
        payload = self._request("GET", "/user", headers=self._headers(access_token))
        return _parse_user(payload)

    def _require_service_key(self, action: str) -> None:
        if not self.service_role_key:
            raise CredentialError(
                f"SUPABASE_SERVICE_ROLE_KEY is required to {action}",
                caller_caused=False,
            )

    def update_email(self, user_id: str, email: str) -> None:
        self._require_service_key("update users")
        self._request(
            "PUT",
            f"/admin/users/{user_id}",
            json={"email": email, "email_confirm": True},
            headers=self._headers(admin=True),
        )

    def delete_user(self, user_id: str) -> None:
        self._require_service_key("delete users")
        self._request("DELETE", f"/admin/users/{user_id}", headers=self._headers(admin=True))


def _is_caller_caused(status: int) -> bool:
    # 429 counts as an outage.
    return status < 500 and status != RATE_LIMITED



def _error_message(response: requests.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    if not isinstance(body, dict):
        return f"HTTP {response.status_code}"
    for key in ("error_description", "msg", "message", "error"):
        if body.get(key):
            return str(body[key])
    return f"HTTP {response.status_code}"


def _parse_user(payload: dict) -> CredentialUser:
    try:
        return CredentialUser(id=payload["id"], email=payload.get("email") or "")
    except KeyError as exc:
        raise CredentialError(
            "Malformed user payload from auth service", caller_caused=False
        ) from exc


def _parse_session_payload(payload: dict) -> CredentialResult:
    user = _parse_user(payload.get("user") or {})
    session = CredentialSession(
        access_token=payload["access_token"],
        refresh_token=payload.get("refresh_token"),
        expires_at=payload.get("expires_at"),
        token_type=payload.get("token_type", "bearer"),
    )
    return CredentialResult(user=user, session=session)
