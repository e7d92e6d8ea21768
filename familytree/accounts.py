"""
Signup (person claiming) and login (lockout) flows.

Both flows orchestrate the store and the credential service and raise the
client-facing errors from ``familytree.errors``; routes only translate the
results into response models.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from familytree import lockout
from familytree.credentials import CredentialError, CredentialService, CredentialSession
from familytree.db import AccountRecord, DbClient, PersonMatch, PersonRecord, StoreError
from familytree.errors import Conflict, Forbidden, NotFound, Unauthorized, UpstreamFailure

logger = logging.getLogger(__name__)

CANDIDATE_LIMIT = 5
FAILURE_RECORD_RETRIES = 3
INVALID_CREDENTIALS = "Invalid email or password"
ALREADY_CLAIMED = "This person already has an account"

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class SignupOutcome:
    account: AccountRecord
    session: Optional[CredentialSession]


@dataclass
class LoginOutcome:
    account: AccountRecord
    session: CredentialSession


def upstream_failure(exc: CredentialError, fallback: str) -> UpstreamFailure:
    if exc.caller_caused:
        return UpstreamFailure(exc.message, caller_caused=True)
    return UpstreamFailure(fallback)


def _candidate(person: PersonRecord) -> dict:
    return {
        "id": person.id,
        "name": person.display_name or "Unknown",
        "birth_date": person.birth_date.isoformat() if person.birth_date else None,
    }


def find_claimable_person(db: DbClient, criteria: PersonMatch) -> PersonRecord:
    """Return the single unclaimed Person matching ``criteria``."""
    matches = db.find_people_matching(criteria, limit=2)
    if not matches:
        candidates = db.list_people_by_first_name(criteria.first_name, limit=CANDIDATE_LIMIT)
        raise NotFound(
            {
                "message": "Person not found",
                "criteria": criteria.as_dict(),
                "candidates": [_candidate(p) for p in candidates],
            }
        )
    if len(matches) > 1:
        logger.warning(
            "Signup criteria matched several people: %s", [p.id for p in matches]
        )
        raise Conflict(
            {
                "message": "More than one person matches these details",
                "matches": [p.id for p in matches],
            }
        )
    person = matches[0]
    if db.is_person_claimed(person.id):
        raise Conflict({"message": ALREADY_CLAIMED})
    return person


def signup(
    *,
    db: DbClient,
    credentials: CredentialService,
    email: str,
    password: str,
    criteria: PersonMatch,
    birth_place: Optional[str] = None,
) -> SignupOutcome:
    person = find_claimable_person(db, criteria)

    try:
        registered = credentials.sign_up(email, password)
    except CredentialError as exc:
        logger.info("Credential registration failed for person %s: %s", person.id, exc.message)
        raise upstream_failure(exc, "Could not register credentials") from exc

    if birth_place and birth_place != person.birth_place:
        try:
            updated = db.update_person(person.id, {"birth_place": birth_place})
        except StoreError:
            logger.exception("Failed to update birth_place for person %s", person.id)
        else:
            if updated:
                person = updated

    account = AccountRecord(
        id=registered.user.id,
        email=email,
        person_id=person.id,
        role=person.role,
        first_name=person.first_name,
        middle_name=person.middle_name,
        last_name=person.last_name,
        birth_date=person.birth_date,
        birth_place=person.birth_place,
    )
    try:
        account = db.create_account(account)
    except StoreError as exc:
        logger.error(
            "Account insert failed for credential %s (person %s): %s",
            registered.user.id,
            person.id,
            exc,
        )
        discard_orphaned_credential(credentials, registered.user.id)
        raise UpstreamFailure("Failed to create account") from exc

    logger.info("Account %s claimed person %s", account.id, person.id)
    return SignupOutcome(account=account, session=registered.session)


def discard_orphaned_credential(credentials: CredentialService, user_id: str) -> None:
    try:
        credentials.delete_user(user_id)
    except CredentialError as exc:
        logger.error(
            "Orphaned credential %s left behind; manual cleanup required: %s",
            user_id,
            exc.message,
        )


def _record_failure(
    db: DbClient,
    account: AccountRecord,
    now: datetime,
    policy: lockout.LockoutPolicy,
) -> None:
    current: Optional[AccountRecord] = account
    for _ in range(FAILURE_RECORD_RETRIES):
        if current is None:
            return
        update = lockout.register_failure(
            current.failed_login_attempts, current.lockout_until, now, policy
        )
        if db.record_login_failure(
            current.id,
            expected_attempts=current.failed_login_attempts,
            attempts=update.attempts,
            lockout_until=update.lockout_until,
        ):
            if update.locked:
                logger.warning(
                    "Account %s locked until %s after %d failed attempts",
                    current.id,
                    update.lockout_until.isoformat(),
                    update.attempts,
                )
            return
        current = db.get_account(current.id)
    logger.warning("Could not record failed login for account %s after retries", account.id)


def login(
    *,
    db: DbClient,
    credentials: CredentialService,
    email: str,
    password: str,
    policy: lockout.LockoutPolicy = lockout.LockoutPolicy(),
    session_ttl: timedelta = timedelta(hours=1),
    clock: Clock = utcnow,
) -> LoginOutcome:
    now = clock()
    known = db.get_account_by_email(email)

    if known and lockout.is_locked(known.lockout_until, now):
        hours = lockout.hours_remaining(known.lockout_until, now)
        raise Forbidden(
            "Account locked due to multiple failed login attempts. "
            f"Please try again in approximately {hours} hours."
        )

    try:
        result = credentials.sign_in(email, password)
    except CredentialError as exc:
        if not exc.caller_caused:
            logger.error("Credential service failure during login: %s", exc.message)
            raise UpstreamFailure("Authentication service unavailable") from exc
        if known:
            _record_failure(db, known, now, policy)
        raise Unauthorized(INVALID_CREDENTIALS) from exc

    if known and lockout.needs_reset(known.failed_login_attempts, known.lockout_until):
        db.reset_login_failures(known.id)

    account = db.get_account(result.user.id)
    if account is None:
        logger.warning("Credential %s authenticated without an account row", result.user.id)
        raise Unauthorized("User not found")

    upstream = result.session
    if upstream is None:
        raise UpstreamFailure("Authentication service returned no session")
    # Expiry is fixed locally so callers get a known window regardless of
    # the upstream token lifetime.
    session = CredentialSession(
        access_token=upstream.access_token,
        refresh_token=upstream.refresh_token,
        expires_at=int((now + session_ttl).timestamp() * 1000),
        token_type=upstream.token_type,
    )
    logger.info("Login succeeded for account %s", account.id)
    return LoginOutcome(account=account, session=session)
