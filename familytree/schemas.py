"""
Pydantic schemas for the family tree API.

Optional text fields are normalized once here: absent, ``null``, empty and
whitespace-only values all become ``None``; anything else is stripped.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Annotated, Any, ClassVar, Optional

from pydantic import (
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    StringConstraints,
    model_validator,
)

from familytree.db import (
    AccountRecord,
    FamilyTreeRecord,
    PersonRecord,
    RelationshipRecord,
    RelationTypeRecord,
)

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str):
        value = value.strip()
        return value or None
    return value


def _normalize_email(value: Any) -> Any:
    if isinstance(value, str):
        return value.strip().lower()
    return value


OptionalText = Annotated[Optional[str], BeforeValidator(_blank_to_none)]
RequiredText = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]
Email = Annotated[
    str,
    BeforeValidator(_normalize_email),
    StringConstraints(pattern=EMAIL_PATTERN, max_length=320),
]


def _display_name(first: Optional[str], middle: Optional[str], last: Optional[str]) -> str:
    return " ".join(part for part in (first, middle, last) if part) or "Unknown"


class _RequestModel(BaseModel):
    model_config = ConfigDict(extra="ignore")


class _PartialUpdate(_RequestModel):
    """Update payload where some fields may be omitted but never cleared."""

    not_nullable: ClassVar[tuple[str, ...]] = ()

    @model_validator(mode="after")
    def _reject_cleared_required(self):
        for name in self.not_nullable:
            if name in self.model_fields_set and getattr(self, name) is None:
                raise ValueError(f"{name} cannot be empty")
        return self

    def changes(self) -> dict:
        return self.model_dump(exclude_unset=True)


# Auth


class SignupRequest(_RequestModel):
    email: Email
    password: str = Field(..., min_length=1, max_length=256)
    first_name: RequiredText
    middle_name: OptionalText = None
    last_name: OptionalText = None
    birth_date: date
    birth_place: OptionalText = None


class LoginRequest(_RequestModel):
    email: Email
    password: str = Field(..., min_length=1, max_length=256)


class SessionResponse(BaseModel):
    access_token: str
    refresh_token: Optional[str] = None
    expires_at: Optional[int] = None
    token_type: str = "bearer"


class AccountResponse(BaseModel):
    id: str
    email: str
    person_id: Optional[int] = None
    role: str
    first_name: Optional[str] = None
    middle_name: Optional[str] = None
    last_name: Optional[str] = None
    birth_date: Optional[date] = None
    birth_place: Optional[str] = None

    @classmethod
    def from_record(cls, record: AccountRecord) -> "AccountResponse":
        return cls(
            id=record.id,
            email=record.email,
            person_id=record.person_id,
            role=record.role,
            first_name=record.first_name,
            middle_name=record.middle_name,
            last_name=record.last_name,
            birth_date=record.birth_date,
            birth_place=record.birth_place,
        )


class AuthResponse(BaseModel):
    message: str
    session: Optional[SessionResponse] = None
    user: AccountResponse


# Users


class AccountAdminResponse(AccountResponse):
    failed_login_attempts: int = 0
    lockout_until: Optional[datetime] = None

    @classmethod
    def from_record(cls, record: AccountRecord) -> "AccountAdminResponse":
        base = AccountResponse.from_record(record).model_dump()
        return cls(
            **base,
            failed_login_attempts=record.failed_login_attempts,
            lockout_until=record.lockout_until,
        )


class ProfileResponse(AccountResponse):
    name: str

    @classmethod
    def from_record(cls, record: AccountRecord) -> "ProfileResponse":
        base = AccountResponse.from_record(record).model_dump()
        return cls(
            **base,
            name=_display_name(record.first_name, record.middle_name, record.last_name),
        )


class AccountCreate(_RequestModel):
    email: Email
    password: Optional[str] = Field(default=None, min_length=1, max_length=256)
    role: RequiredText = "user"
    person_id: Optional[int] = None
    first_name: OptionalText = None
    middle_name: OptionalText = None
    last_name: OptionalText = None
    birth_date: Optional[date] = None
    birth_place: OptionalText = None


class AccountUpdate(_PartialUpdate):
    not_nullable: ClassVar[tuple[str, ...]] = ("email", "role")

    email: Optional[Email] = None
    role: Optional[RequiredText] = None
    person_id: Optional[int] = None
    first_name: OptionalText = None
    middle_name: OptionalText = None
    last_name: OptionalText = None
    birth_date: Optional[date] = None
    birth_place: OptionalText = None


# People


class PersonSummary(BaseModel):
    id: int
    name: str
    first_name: Optional[str] = None
    middle_name: Optional[str] = None
    last_name: Optional[str] = None

    @classmethod
    def from_record(cls, record: PersonRecord) -> "PersonSummary":
        return cls(
            id=record.id,
            name=_display_name(record.first_name, record.middle_name, record.last_name),
            first_name=record.first_name,
            middle_name=record.middle_name,
            last_name=record.last_name,
        )


class PersonResponse(PersonSummary):
    birth_date: Optional[date] = None
    birth_place: Optional[str] = None
    story: Optional[str] = None
    role: str

    @classmethod
    def from_record(cls, record: PersonRecord) -> "PersonResponse":
        return cls(
            **PersonSummary.from_record(record).model_dump(),
            birth_date=record.birth_date,
            birth_place=record.birth_place,
            story=record.story,
            role=record.role,
        )


class PersonDetailsResponse(PersonResponse):
    story_html: str


class PersonCreate(_RequestModel):
    first_name: RequiredText
    middle_name: OptionalText = None
    last_name: OptionalText = None
    birth_date: date
    birth_place: OptionalText = None
    story: OptionalText = None
    role: OptionalText = None


class PersonUpdate(_PartialUpdate):
    not_nullable: ClassVar[tuple[str, ...]] = ("first_name", "birth_date", "role")

    first_name: OptionalText = None
    middle_name: OptionalText = None
    last_name: OptionalText = None
    birth_date: Optional[date] = None
    birth_place: OptionalText = None
    story: OptionalText = None
    role: OptionalText = None


class StoryUpdate(_RequestModel):
    story: OptionalText = None


# Relationships


class FamilyTreeResponse(BaseModel):
    id: int
    name: str

    @classmethod
    def from_record(cls, record: FamilyTreeRecord) -> "FamilyTreeResponse":
        return cls(id=record.id, name=record.name)


class RelationTypeResponse(BaseModel):
    id: int
    type_name: str

    @classmethod
    def from_record(cls, record: RelationTypeRecord) -> "RelationTypeResponse":
        return cls(id=record.id, type_name=record.type_name)


class RelationshipResponse(BaseModel):
    id: int
    created_at: datetime
    notes: Optional[str] = None
    parent: Optional[PersonSummary] = None
    child: Optional[PersonSummary] = None
    relation_type: Optional[RelationTypeResponse] = None
    family_tree: Optional[FamilyTreeResponse] = None

    @classmethod
    def from_record(cls, record: RelationshipRecord) -> "RelationshipResponse":
        return cls(
            id=record.id,
            created_at=record.created_at,
            notes=record.notes,
            parent=PersonSummary.from_record(record.parent) if record.parent else None,
            child=PersonSummary.from_record(record.child) if record.child else None,
            relation_type=(
                RelationTypeResponse.from_record(record.relation_type_record)
                if record.relation_type_record
                else None
            ),
            family_tree=(
                FamilyTreeResponse.from_record(record.family_tree)
                if record.family_tree
                else None
            ),
        )


class PersonRelationshipsResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    as_parent: list[RelationshipResponse] = Field(
        default_factory=list, serialization_alias="asParent"
    )
    as_child: list[RelationshipResponse] = Field(
        default_factory=list, serialization_alias="asChild"
    )
    all: list[RelationshipResponse] = Field(default_factory=list)


class RelationshipCreate(_RequestModel):
    parent_id: int
    child_id: int
    relation_type: int
    notes: OptionalText = None
    family_tree_id: Optional[int] = None

    @model_validator(mode="after")
    def _distinct_people(self):
        if self.parent_id == self.child_id:
            raise ValueError("parent_id and child_id must differ")
        return self


class RelationshipUpdate(_PartialUpdate):
    not_nullable: ClassVar[tuple[str, ...]] = ("parent_id", "child_id", "relation_type")

    parent_id: Optional[int] = None
    child_id: Optional[int] = None
    relation_type: Optional[int] = None
    notes: OptionalText = None
    family_tree_id: Optional[int] = None


# Misc


class MessageResponse(BaseModel):
    message: str


class ContactRequest(_RequestModel):
    email: Email
    message: Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=5000)]


class ContactResponse(BaseModel):
    success: bool
    id: str
