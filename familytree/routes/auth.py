"""
Signup and login endpoints.
"""

from __future__ import annotations

from datetime import timedelta

from fastapi import APIRouter, Depends

from familytree import accounts, lockout
from familytree.config import Settings, get_settings
from familytree.credentials import CredentialService
from familytree.db import DbClient, PersonMatch
from familytree.dependencies import get_credential_service, get_db_client
from familytree.schemas import (
    AccountResponse,
    AuthResponse,
    LoginRequest,
    SessionResponse,
    SignupRequest,
)

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/signup", response_model=AuthResponse)
def signup(
    payload: SignupRequest,
    db: DbClient = Depends(get_db_client),
    credentials: CredentialService = Depends(get_credential_service),
):
    criteria = PersonMatch(
        first_name=payload.first_name,
        birth_date=payload.birth_date,
        middle_name=payload.middle_name,
        last_name=payload.last_name,
    )
    outcome = accounts.signup(
        db=db,
        credentials=credentials,
        email=payload.email,
        password=payload.password,
        criteria=criteria,
        birth_place=payload.birth_place,
    )
    session = (
        SessionResponse(**outcome.session.as_dict()) if outcome.session else None
    )
    return AuthResponse(
        message="Signup successful",
        session=session,
        user=AccountResponse.from_record(outcome.account),
    )


@router.post("/login", response_model=AuthResponse)
def login(
    payload: LoginRequest,
    db: DbClient = Depends(get_db_client),
    credentials: CredentialService = Depends(get_credential_service),
    settings: Settings = Depends(get_settings),
):
    policy = lockout.LockoutPolicy(
        threshold=settings.lockout_threshold,
        duration=timedelta(hours=settings.lockout_hours),
    )
    outcome = accounts.login(
        db=db,
        credentials=credentials,
        email=payload.email,
        password=payload.password,
        policy=policy,
        session_ttl=timedelta(seconds=settings.session_ttl_seconds),
    )
    return AuthResponse(
        message="Login successful",
        session=SessionResponse(**outcome.session.as_dict()),
        user=AccountResponse.from_record(outcome.account),
    )
