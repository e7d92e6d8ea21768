"""
Relationship graph endpoints.

``GET /relationships`` lists family trees; with ``?family_tree_id=`` it lists
the parent/child edges of that tree instead.
"""

from __future__ import annotations

import logging
from typing import Union

from fastapi import APIRouter, Depends, Query

from familytree.db import DbClient, MissingReference
from familytree.dependencies import get_current_account, get_db_client
from familytree.errors import NotFound, ValidationError
from familytree.schemas import (
    FamilyTreeResponse,
    MessageResponse,
    PersonRelationshipsResponse,
    RelationshipCreate,
    RelationshipResponse,
    RelationshipUpdate,
)

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/relationships",
    tags=["relationships"],
    dependencies=[Depends(get_current_account)],
)


def _responses(records) -> list[RelationshipResponse]:
    return [RelationshipResponse.from_record(r) for r in records]


@router.get(
    "",
    response_model=Union[list[RelationshipResponse], list[FamilyTreeResponse]],
)
def list_relationships(
    family_tree_id: int | None = Query(None),
    db: DbClient = Depends(get_db_client),
):
    if family_tree_id is None:
        return [FamilyTreeResponse.from_record(t) for t in db.list_family_trees()]
    if db.get_family_tree(family_tree_id) is None:
        raise NotFound("Family tree not found")
    return _responses(db.list_relationships(family_tree_id))


@router.get("/person/{person_id}", response_model=PersonRelationshipsResponse)
def get_relationships_by_person(person_id: int, db: DbClient = Depends(get_db_client)):
    as_parent = _responses(db.list_relationships_by_parent(person_id))
    as_child = _responses(db.list_relationships_by_child(person_id))
    return PersonRelationshipsResponse(
        as_parent=as_parent, as_child=as_child, all=as_parent + as_child
    )


@router.get("/parent/{parent_id}", response_model=list[RelationshipResponse])
def get_relationships_by_parent(parent_id: int, db: DbClient = Depends(get_db_client)):
    return _responses(db.list_relationships_by_parent(parent_id))


@router.get("/child/{child_id}", response_model=list[RelationshipResponse])
def get_relationships_by_child(child_id: int, db: DbClient = Depends(get_db_client)):
    return _responses(db.list_relationships_by_child(child_id))


@router.post("", response_model=RelationshipResponse, status_code=201)
def create_relationship(
    payload: RelationshipCreate, db: DbClient = Depends(get_db_client)
):
    try:
        record = db.create_relationship(payload.model_dump())
    except MissingReference as exc:
        raise ValidationError(str(exc)) from exc
    logger.info(
        "Created relationship %s: %s -> %s", record.id, record.parent_id, record.child_id
    )
    return RelationshipResponse.from_record(record)


@router.put("/{relationship_id}", response_model=RelationshipResponse)
def update_relationship(
    relationship_id: int,
    payload: RelationshipUpdate,
    db: DbClient = Depends(get_db_client),
):
    changes = payload.changes()
    current = db.get_relationship(relationship_id)
    if current is None:
        raise NotFound("Relationship not found")
    parent_id = changes.get("parent_id", current.parent_id)
    child_id = changes.get("child_id", current.child_id)
    if parent_id == child_id:
        raise ValidationError("parent_id and child_id must differ")
    try:
        record = db.update_relationship(relationship_id, changes)
    except MissingReference as exc:
        raise ValidationError(str(exc)) from exc
    if record is None:
        raise NotFound("Relationship not found")
    return RelationshipResponse.from_record(record)


@router.delete("/{relationship_id}", response_model=MessageResponse)
def delete_relationship(relationship_id: int, db: DbClient = Depends(get_db_client)):
    if not db.delete_relationship(relationship_id):
        raise NotFound("Relationship not found")
    return MessageResponse(message="Relationship deleted successfully")
