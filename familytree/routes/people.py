"""
Person directory endpoints.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Query

from familytree.db import AccountRecord, DbClient
from familytree.dependencies import ADMIN_ROLE, get_current_account, get_db_client, require_admin
from familytree.errors import Forbidden, NotFound, ValidationError
from familytree.schemas import (
    MessageResponse,
    PersonCreate,
    PersonDetailsResponse,
    PersonResponse,
    PersonUpdate,
    StoryUpdate,
)
from familytree.story import render_story

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/people",
    tags=["people"],
    dependencies=[Depends(get_current_account)],
)


@router.get("", response_model=list[PersonResponse])
def list_people(db: DbClient = Depends(get_db_client)):
    return [PersonResponse.from_record(p) for p in db.list_people()]


@router.get("/search", response_model=list[PersonResponse])
def search_people(
    q: str | None = Query(None, description="Case-insensitive name fragment"),
    db: DbClient = Depends(get_db_client),
):
    query = (q or "").strip()
    if not query:
        raise ValidationError("Search query is required")
    return [PersonResponse.from_record(p) for p in db.search_people(query)]


@router.get("/details/{person_id}", response_model=PersonDetailsResponse)
def get_person_details(person_id: int, db: DbClient = Depends(get_db_client)):
    person = db.get_person(person_id)
    if not person:
        raise NotFound("Person not found")
    return PersonDetailsResponse(
        **PersonResponse.from_record(person).model_dump(),
        story_html=render_story(person.story, db.get_people),
    )


@router.get("/{person_id}", response_model=PersonResponse)
def get_person(person_id: int, db: DbClient = Depends(get_db_client)):
    person = db.get_person(person_id)
    if not person:
        raise NotFound("Person not found")
    return PersonResponse.from_record(person)


def _forbid_role_change(account: AccountRecord, role_given: bool) -> None:
    if role_given and account.role != ADMIN_ROLE:
        raise Forbidden("Forbidden: only admins can set a person's role")


@router.post("", response_model=PersonResponse, status_code=201)
def create_person(
    payload: PersonCreate,
    account: AccountRecord = Depends(get_current_account),
    db: DbClient = Depends(get_db_client),
):
    _forbid_role_change(account, payload.role is not None)
    person = db.create_person(payload.model_dump())
    logger.info("Created person %s", person.id)
    return PersonResponse.from_record(person)


@router.put("/{person_id}", response_model=PersonResponse)
def update_person(
    person_id: int,
    payload: PersonUpdate,
    account: AccountRecord = Depends(get_current_account),
    db: DbClient = Depends(get_db_client),
):
    changes = payload.changes()
    _forbid_role_change(account, "role" in changes)
    person = db.update_person(person_id, changes)
    if not person:
        raise NotFound("Person not found")
    return PersonResponse.from_record(person)


@router.delete("/{person_id}", response_model=MessageResponse)
def delete_person(
    person_id: int,
    admin: AccountRecord = Depends(require_admin),
    db: DbClient = Depends(get_db_client),
):
    if not db.delete_person(person_id):
        raise NotFound("Person not found")
    logger.info("Person %s deleted by %s", person_id, admin.id)
    return MessageResponse(message="Person deleted successfully")


@router.put("/{person_id}/story", response_model=PersonDetailsResponse)
def save_person_story(
    person_id: int,
    payload: StoryUpdate,
    account: AccountRecord = Depends(get_current_account),
    db: DbClient = Depends(get_db_client),
):
    if account.role != ADMIN_ROLE and account.person_id != person_id:
        raise Forbidden("Forbidden: cannot edit another person's story")
    person = db.update_person(person_id, {"story": payload.story})
    if not person:
        raise NotFound("Person not found")
    return PersonDetailsResponse(
        **PersonResponse.from_record(person).model_dump(),
        story_html=render_story(person.story, db.get_people),
    )
