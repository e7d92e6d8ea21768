"""
User administration endpoints.
"""

from __future__ import annotations

import logging
import uuid

from fastapi import APIRouter, Depends

from familytree import accounts
from familytree.credentials import CredentialError, CredentialService
from familytree.db import AccountRecord, DbClient, StoreError
from familytree.dependencies import (
    ADMIN_ROLE,
    get_credential_service,
    get_current_account,
    get_db_client,
    require_admin,
)
from familytree.errors import Conflict, Forbidden, NotFound, UpstreamFailure, ValidationError
from familytree.schemas import (
    AccountAdminResponse,
    AccountCreate,
    AccountUpdate,
    MessageResponse,
    ProfileResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/users", tags=["users"])

ADMIN_ONLY_FIELDS = {"email", "role", "person_id"}


@router.get("", response_model=list[AccountAdminResponse])
def list_users(
    _: AccountRecord = Depends(require_admin),
    db: DbClient = Depends(get_db_client),
):
    return [AccountAdminResponse.from_record(a) for a in db.list_accounts()]


@router.get("/profile", response_model=ProfileResponse)
def get_profile(account: AccountRecord = Depends(get_current_account)):
    return ProfileResponse.from_record(account)


def _check_claimable(db: DbClient, person_id: int) -> None:
    if db.get_person(person_id) is None:
        raise ValidationError(f"Person {person_id} does not exist")
    if db.is_person_claimed(person_id):
        raise Conflict({"message": accounts.ALREADY_CLAIMED})


@router.post("", response_model=AccountAdminResponse, status_code=201)
def create_user(
    payload: AccountCreate,
    _: AccountRecord = Depends(require_admin),
    db: DbClient = Depends(get_db_client),
    credentials: CredentialService = Depends(get_credential_service),
):
    if db.get_account_by_email(payload.email):
        raise Conflict("A user with this email already exists")
    if payload.person_id is not None:
        _check_claimable(db, payload.person_id)

    account_id = uuid.uuid4().hex
    if payload.password:
        try:
            account_id = credentials.sign_up(payload.email, payload.password).user.id
        except CredentialError as exc:
            raise accounts.upstream_failure(exc, "Could not register credentials") from exc

    record = AccountRecord(
        id=account_id,
        email=payload.email,
        person_id=payload.person_id,
        role=payload.role,
        first_name=payload.first_name,
        middle_name=payload.middle_name,
        last_name=payload.last_name,
        birth_date=payload.birth_date,
        birth_place=payload.birth_place,
    )
    try:
        created = db.create_account(record)
    except StoreError as exc:
        logger.error("Admin account insert failed for %s: %s", account_id, exc)
        if payload.password:
            accounts.discard_orphaned_credential(credentials, account_id)
        raise UpstreamFailure("Failed to create account") from exc
    logger.info("Admin created account %s", created.id)
    return AccountAdminResponse.from_record(created)


@router.put("/{user_id}", response_model=AccountAdminResponse)
def update_user(
    user_id: str,
    payload: AccountUpdate,
    caller: AccountRecord = Depends(get_current_account),
    db: DbClient = Depends(get_db_client),
    credentials: CredentialService = Depends(get_credential_service),
):
    is_admin = caller.role == ADMIN_ROLE
    if not is_admin and caller.id != user_id:
        raise Forbidden("Forbidden: cannot update other users")
    changes = payload.changes()
    if not is_admin and (ADMIN_ONLY_FIELDS & changes.keys()):
        raise Forbidden("Forbidden: only admins can change email, role or person")

    current = db.get_account(user_id)
    if current is None:
        raise NotFound("User not found")
    person_id = changes.get("person_id")
    if person_id is not None and person_id != current.person_id:
        _check_claimable(db, person_id)
    if "email" in changes and changes["email"] != current.email:
        existing = db.get_account_by_email(changes["email"])
        if existing and existing.id != user_id:
            raise Conflict("A user with this email already exists")
        _sync_credential_email(credentials, user_id, changes["email"])

    updated = db.update_account(user_id, changes)
    if updated is None:
        raise NotFound("User not found")
    return AccountAdminResponse.from_record(updated)


def _sync_credential_email(credentials: CredentialService, user_id: str, email: str) -> None:
    """Keep the login e-mail and the account row pointing at the same address."""
    try:
        credentials.update_email(user_id, email)
    except CredentialError as exc:
        if exc.status == 404:
            # Accounts created without a password have no credential.
            logger.info("Account %s has no credential to update", user_id)
            return
        raise accounts.upstream_failure(exc, "Could not update credentials") from exc


@router.delete("/{user_id}", response_model=MessageResponse)
def delete_user(
    user_id: str,
    _: AccountRecord = Depends(require_admin),
    db: DbClient = Depends(get_db_client),
    credentials: CredentialService = Depends(get_credential_service),
):
    if not db.delete_account(user_id):
        raise NotFound("User not found")
    try:
        credentials.delete_user(user_id)
    except CredentialError as exc:
        logger.warning("Deleted account %s but not its credential: %s", user_id, exc.message)
    return MessageResponse(message="User deleted")
