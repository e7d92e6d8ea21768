"""
Dependency wiring for the FastAPI app.
"""

from __future__ import annotations

import logging
from typing import Callable, Optional

from fastapi import Depends, Header

from familytree.config import get_settings
from familytree.credentials import (
    CredentialError,
    CredentialService,
    InMemoryCredentialService,
    SupabaseCredentialService,
)
from familytree.db import AccountRecord, DbClient, InMemoryDbClient, PostgresDbClient
from familytree.errors import Forbidden, Unauthorized, UpstreamFailure
from familytree.mailer import InMemoryMailer, Mailer, ResendMailer

logger = logging.getLogger(__name__)

ADMIN_ROLE = "admin"

_db_client: DbClient | None = None
_credential_service: CredentialService | None = None
_mailer: Mailer | None = None


def get_db_client() -> DbClient:
    """
    Return a singleton store client so in-memory state persists across requests.
    """
    global _db_client
    if _db_client:
        return _db_client

    settings = get_settings()
    if settings.use_in_memory_backends or not settings.database_url:
        _db_client = InMemoryDbClient()
    else:
        _db_client = PostgresDbClient(settings.database_url)
    return _db_client


def get_credential_service() -> CredentialService:
    global _credential_service
    if _credential_service:
        return _credential_service

    settings = get_settings()
    if (
        settings.use_in_memory_backends
        or not settings.supabase_url
        or not settings.supabase_anon_key
    ):
        _credential_service = InMemoryCredentialService(
            session_ttl_seconds=settings.session_ttl_seconds
        )
    else:
        _credential_service = SupabaseCredentialService(
            url=settings.supabase_url,
            anon_key=settings.supabase_anon_key,
            service_role_key=settings.supabase_service_role_key,
            timeout=settings.request_timeout_seconds,
        )
    return _credential_service


def get_mailer() -> Mailer:
    global _mailer
    if _mailer:
        return _mailer

    settings = get_settings()
    if settings.use_in_memory_backends or not settings.resend_api_key:
        _mailer = InMemoryMailer()
    else:
        _mailer = ResendMailer(
            api_key=settings.resend_api_key,
            timeout=settings.request_timeout_seconds,
        )
    return _mailer


def _bearer_token(authorization: Optional[str]) -> str:
    if not authorization:
        raise Unauthorized("No token provided")
    scheme, _, token = authorization.partition(" ")
    token = token.strip()
    if scheme.lower() != "bearer" or not token:
        raise Unauthorized("Invalid token format")
    return token


def get_current_account(
    authorization: Optional[str] = Header(default=None),
    db: DbClient = Depends(get_db_client),
    credentials: CredentialService = Depends(get_credential_service),
) -> AccountRecord:
    """Resolve the bearer token to the caller's Account row."""
    token = _bearer_token(authorization)
    try:
        user = credentials.get_user(token)
    except CredentialError as exc:
        if not exc.caller_caused:
            logger.error("Credential service failure during token check: %s", exc.message)
            raise UpstreamFailure("Authentication service unavailable") from exc
        raise Unauthorized() from exc

    account = db.get_account(user.id)
    if account is None:
        raise Unauthorized("User not found")
    return account


def require_role(role: str) -> Callable[..., AccountRecord]:
    def _check(account: AccountRecord = Depends(get_current_account)) -> AccountRecord:
        if account.role != role:
            raise Forbidden()
        return account

    return _check


require_admin = require_role(ADMIN_ROLE)
