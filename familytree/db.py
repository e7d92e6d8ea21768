"""
Store abstraction for Postgres and an in-memory test implementation.
"""

from __future__ import annotations

import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timezone
from typing import Dict, Iterable, Iterator, Optional, Protocol

from sqlalchemy import (
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    create_engine,
    delete,
    func,
    or_,
    select,
    update,
)
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

DEFAULT_PERSON_ROLE = "user"
DEFAULT_RELATION_TYPES = ("biological", "adoptive", "step")

PERSON_FIELDS = (
    "first_name",
    "middle_name",
    "last_name",
    "birth_date",
    "birth_place",
    "story",
    "role",
)
ACCOUNT_FIELDS = (
    "email",
    "person_id",
    "role",
    "first_name",
    "middle_name",
    "last_name",
    "birth_date",
    "birth_place",
)
RELATIONSHIP_FIELDS = (
    "parent_id",
    "child_id",
    "relation_type",
    "notes",
    "family_tree_id",
)


class StoreError(RuntimeError):
    """Raised when the backing store rejects or fails an operation."""


class MissingReference(StoreError):
    """A write referenced a row that does not exist."""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes even for timezone-aware columns.
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def _fold(value: Optional[str]) -> Optional[str]:
    return value.casefold() if value is not None else None


@dataclass
class PersonRecord:
    id: int
    first_name: str
    birth_date: Optional[date] = None
    middle_name: Optional[str] = None
    last_name: Optional[str] = None
    birth_place: Optional[str] = None
    story: Optional[str] = None
    role: str = DEFAULT_PERSON_ROLE

    @property
    def display_name(self) -> str:
        parts = [self.first_name, self.middle_name, self.last_name]
        return " ".join(part for part in parts if part)


@dataclass(frozen=True)
class PersonMatch:
    """
    Criteria used to claim a Person at signup.

    ``None`` for middle/last name means "absent" and only matches a stored
    NULL; a value matches case-insensitively.
    """

    first_name: str
    birth_date: date
    middle_name: Optional[str] = None
    last_name: Optional[str] = None

    def matches(self, person: PersonRecord) -> bool:
        if _fold(person.first_name) != _fold(self.first_name):
            return False
        if person.birth_date != self.birth_date:
            return False
        for wanted, stored in (
            (self.middle_name, person.middle_name),
            (self.last_name, person.last_name),
        ):
            if wanted is None:
                if stored is not None:
                    return False
            elif _fold(stored) != _fold(wanted):
                return False
        return True

    def as_dict(self) -> dict:
        return {
            "first_name": self.first_name,
            "middle_name": self.middle_name,
            "last_name": self.last_name,
            "birth_date": self.birth_date.isoformat(),
        }


@dataclass
class AccountRecord:
    id: str
    email: str
    first_name: Optional[str] = None
    person_id: Optional[int] = None
    role: str = DEFAULT_PERSON_ROLE
    middle_name: Optional[str] = None
    last_name: Optional[str] = None
    birth_date: Optional[date] = None
    birth_place: Optional[str] = None
    failed_login_attempts: int = 0
    lockout_until: Optional[datetime] = None


@dataclass
class FamilyTreeRecord:
    id: int
    name: str


@dataclass
class RelationTypeRecord:
    id: int
    type_name: str


@dataclass
class RelationshipRecord:
    id: int
    parent_id: int
    child_id: int
    relation_type: int
    notes: Optional[str] = None
    family_tree_id: Optional[int] = None
    created_at: datetime = field(default_factory=_utcnow)
    parent: Optional[PersonRecord] = None
    child: Optional[PersonRecord] = None
    relation_type_record: Optional[RelationTypeRecord] = None
    family_tree: Optional[FamilyTreeRecord] = None


class DbClient(Protocol):
    """Interface for store access."""

    # People
    def list_people(self) -> list[PersonRecord]:
        ...

    def search_people(self, query: str) -> list[PersonRecord]:
        ...

    def get_person(self, person_id: int) -> Optional[PersonRecord]:
        ...

    def get_people(self, person_ids: Iterable[int]) -> Dict[int, PersonRecord]:
        ...

    def create_person(self, fields: dict) -> PersonRecord:
        ...

    def update_person(self, person_id: int, fields: dict) -> Optional[PersonRecord]:
        ...

    def delete_person(self, person_id: int) -> bool:
        ...

    def find_people_matching(
        self, criteria: PersonMatch, limit: int = 2
    ) -> list[PersonRecord]:
        ...

    def list_people_by_first_name(
        self, first_name: str, limit: int = 5
    ) -> list[PersonRecord]:
        ...

    def is_person_claimed(self, person_id: int) -> bool:
        ...

    # Accounts
    def list_accounts(self) -> list[AccountRecord]:
        ...

    def get_account(self, account_id: str) -> Optional[AccountRecord]:
        ...

    def get_account_by_email(self, email: str) -> Optional[AccountRecord]:
        ...

    def create_account(self, account: AccountRecord) -> AccountRecord:
        ...

    def update_account(
        self, account_id: str, fields: dict
    ) -> Optional[AccountRecord]:
        ...

    def delete_account(self, account_id: str) -> bool:
        ...

    def record_login_failure(
        self,
        account_id: str,
        *,
        expected_attempts: int,
        attempts: int,
        lockout_until: Optional[datetime],
    ) -> bool:
        ...

    def reset_login_failures(self, account_id: str) -> None:
        ...

    # Family trees and relation types
    def list_family_trees(self) -> list[FamilyTreeRecord]:
        ...

    def create_family_tree(self, name: str) -> FamilyTreeRecord:
        ...

    def get_family_tree(self, family_tree_id: int) -> Optional[FamilyTreeRecord]:
        ...

    def list_relation_types(self) -> list[RelationTypeRecord]:
        ...

    def create_relation_type(self, type_name: str) -> RelationTypeRecord:
        ...

    def get_relation_type(self, type_id: int) -> Optional[RelationTypeRecord]:
        ...

    # Relationships
    def list_relationships(
        self, family_tree_id: Optional[int] = None
    ) -> list[RelationshipRecord]:
        ...

    def list_relationships_by_parent(self, parent_id: int) -> list[RelationshipRecord]:
        ...

    def list_relationships_by_child(self, child_id: int) -> list[RelationshipRecord]:
        ...

    def get_relationship(self, relationship_id: int) -> Optional[RelationshipRecord]:
        ...

    def create_relationship(self, fields: dict) -> RelationshipRecord:
        ...

    def update_relationship(
        self, relationship_id: int, fields: dict
    ) -> Optional[RelationshipRecord]:
        ...

    def delete_relationship(self, relationship_id: int) -> bool:
        ...


def _person_sort_key(person: PersonRecord) -> tuple:
    return (person.first_name, person.id)


class InMemoryDbClient:
    """Simple in-memory store for development and tests."""

    def __init__(self):
        self.people: Dict[int, PersonRecord] = {}
        self.accounts: Dict[str, AccountRecord] = {}
        self.family_trees: Dict[int, FamilyTreeRecord] = {}
        self.relation_types: Dict[int, RelationTypeRecord] = {}
        self.relationships: Dict[int, RelationshipRecord] = {}
        self._next_ids: Dict[str, int] = {}
        self._seed_relation_types()

    def _next_id(self, table: str) -> int:
        value = self._next_ids.get(table, 0) + 1
        self._next_ids[table] = value
        return value

    def _seed_relation_types(self) -> None:
        for type_name in DEFAULT_RELATION_TYPES:
            self.create_relation_type(type_name)

    def reset(self) -> None:
        """Clear all stored data (useful in tests)."""
        self.people.clear()
        self.accounts.clear()
        self.family_trees.clear()
        self.relation_types.clear()
        self.relationships.clear()
        self._next_ids.clear()
        self._seed_relation_types()

    # People

    def list_people(self) -> list[PersonRecord]:
        return [replace(p) for p in sorted(self.people.values(), key=_person_sort_key)]

    def search_people(self, query: str) -> list[PersonRecord]:
        needle = query.casefold()
        return [
            person
            for person in self.list_people()
            if any(
                value and needle in value.casefold()
                for value in (person.first_name, person.middle_name, person.last_name)
            )
        ]

    def get_person(self, person_id: int) -> Optional[PersonRecord]:
        person = self.people.get(person_id)
        return replace(person) if person else None

    def get_people(self, person_ids: Iterable[int]) -> Dict[int, PersonRecord]:
        return {
            pid: replace(self.people[pid]) for pid in set(person_ids) if pid in self.people
        }

    def create_person(self, fields: dict) -> PersonRecord:
        values = {k: v for k, v in fields.items() if k in PERSON_FIELDS}
        if values.get("role") is None:
            values["role"] = DEFAULT_PERSON_ROLE
        record = PersonRecord(id=self._next_id("people"), **values)
        self.people[record.id] = record
        return replace(record)

    def update_person(self, person_id: int, fields: dict) -> Optional[PersonRecord]:
        person = self.people.get(person_id)
        if not person:
            return None
        for key, value in fields.items():
            if key in PERSON_FIELDS:
                setattr(person, key, value)
        return replace(person)

    def delete_person(self, person_id: int) -> bool:
        if person_id not in self.people:
            return False
        for rel_id in [
            r.id
            for r in self.relationships.values()
            if person_id in (r.parent_id, r.child_id)
        ]:
            del self.relationships[rel_id]
        for account in self.accounts.values():
            if account.person_id == person_id:
                account.person_id = None
        del self.people[person_id]
        return True

    def find_people_matching(
        self, criteria: PersonMatch, limit: int = 2
    ) -> list[PersonRecord]:
        matches = [p for p in self.list_people() if criteria.matches(p)]
        return matches[:limit]

    def list_people_by_first_name(
        self, first_name: str, limit: int = 5
    ) -> list[PersonRecord]:
        wanted = first_name.casefold()
        matches = [p for p in self.list_people() if p.first_name.casefold() == wanted]
        return matches[:limit]

    def is_person_claimed(self, person_id: int) -> bool:
        return any(a.person_id == person_id for a in self.accounts.values())

    # Accounts

    def list_accounts(self) -> list[AccountRecord]:
        return [replace(a) for a in sorted(self.accounts.values(), key=lambda a: a.email)]

    def get_account(self, account_id: str) -> Optional[AccountRecord]:
        account = self.accounts.get(account_id)
        return replace(account) if account else None

    def get_account_by_email(self, email: str) -> Optional[AccountRecord]:
        wanted = email.casefold()
        for account in self.accounts.values():
            if account.email.casefold() == wanted:
                return replace(account)
        return None

    def create_account(self, account: AccountRecord) -> AccountRecord:
        if account.id in self.accounts:
            raise StoreError(f"Account {account.id} already exists")
        if self.get_account_by_email(account.email):
            raise StoreError(f"Account with email {account.email} already exists")
        self.accounts[account.id] = replace(account)
        return replace(account)

    def update_account(
        self, account_id: str, fields: dict
    ) -> Optional[AccountRecord]:
        account = self.accounts.get(account_id)
        if not account:
            return None
        for key, value in fields.items():
            if key in ACCOUNT_FIELDS:
                setattr(account, key, value)
        return replace(account)

    def delete_account(self, account_id: str) -> bool:
        return self.accounts.pop(account_id, None) is not None

    def record_login_failure(
        self,
        account_id: str,
        *,
        expected_attempts: int,
        attempts: int,
        lockout_until: Optional[datetime],
    ) -> bool:
        account = self.accounts.get(account_id)
        if not account or account.failed_login_attempts != expected_attempts:
            return False
        account.failed_login_attempts = attempts
        account.lockout_until = lockout_until
        return True

    def reset_login_failures(self, account_id: str) -> None:
        account = self.accounts.get(account_id)
        if account:
            account.failed_login_attempts = 0
            account.lockout_until = None

    # Family trees and relation types

    def list_family_trees(self) -> list[FamilyTreeRecord]:
        return sorted(
            (replace(t) for t in self.family_trees.values()), key=lambda t: (t.name, t.id)
        )

    def create_family_tree(self, name: str) -> FamilyTreeRecord:
        record = FamilyTreeRecord(id=self._next_id("family_tree"), name=name)
        self.family_trees[record.id] = record
        return replace(record)

    def get_family_tree(self, family_tree_id: int) -> Optional[FamilyTreeRecord]:
        tree = self.family_trees.get(family_tree_id)
        return replace(tree) if tree else None

    def list_relation_types(self) -> list[RelationTypeRecord]:
        return [replace(t) for t in self.relation_types.values()]

    def create_relation_type(self, type_name: str) -> RelationTypeRecord:
        record = RelationTypeRecord(id=self._next_id("relationship_type"), type_name=type_name)
        self.relation_types[record.id] = record
        return replace(record)

    def get_relation_type(self, type_id: int) -> Optional[RelationTypeRecord]:
        rel_type = self.relation_types.get(type_id)
        return replace(rel_type) if rel_type else None

    # Relationships

    def _hydrate(self, record: RelationshipRecord) -> RelationshipRecord:
        return replace(
            record,
            parent=self.get_person(record.parent_id),
            child=self.get_person(record.child_id),
            relation_type_record=self.get_relation_type(record.relation_type),
            family_tree=(
                self.get_family_tree(record.family_tree_id)
                if record.family_tree_id is not None
                else None
            ),
        )

    def _check_references(self, record: RelationshipRecord) -> None:
        if record.parent_id not in self.people:
            raise MissingReference(f"Person {record.parent_id} does not exist")
        if record.child_id not in self.people:
            raise MissingReference(f"Person {record.child_id} does not exist")
        if record.relation_type not in self.relation_types:
            raise MissingReference(f"Relation type {record.relation_type} does not exist")
        if (
            record.family_tree_id is not None
            and record.family_tree_id not in self.family_trees
        ):
            raise MissingReference(f"Family tree {record.family_tree_id} does not exist")

    def _select_relationships(self, predicate) -> list[RelationshipRecord]:
        rows = [r for r in self.relationships.values() if predicate(r)]
        rows.sort(key=lambda r: (r.created_at, r.id), reverse=True)
        return [self._hydrate(r) for r in rows]

    def list_relationships(
        self, family_tree_id: Optional[int] = None
    ) -> list[RelationshipRecord]:
        return self._select_relationships(
            lambda r: family_tree_id is None or r.family_tree_id == family_tree_id
        )

    def list_relationships_by_parent(self, parent_id: int) -> list[RelationshipRecord]:
        return self._select_relationships(lambda r: r.parent_id == parent_id)

    def list_relationships_by_child(self, child_id: int) -> list[RelationshipRecord]:
        return self._select_relationships(lambda r: r.child_id == child_id)

    def get_relationship(self, relationship_id: int) -> Optional[RelationshipRecord]:
        record = self.relationships.get(relationship_id)
        return self._hydrate(record) if record else None

    def create_relationship(self, fields: dict) -> RelationshipRecord:
        values = {k: v for k, v in fields.items() if k in RELATIONSHIP_FIELDS}
        record = RelationshipRecord(id=self._next_id("relationships"), **values)
        self._check_references(record)
        self.relationships[record.id] = record
        return self._hydrate(record)

    def update_relationship(
        self, relationship_id: int, fields: dict
    ) -> Optional[RelationshipRecord]:
        record = self.relationships.get(relationship_id)
        if not record:
            return None
        values = {k: v for k, v in fields.items() if k in RELATIONSHIP_FIELDS}
        updated = replace(record, **values)
        self._check_references(updated)
        self.relationships[relationship_id] = updated
        return self._hydrate(updated)

    def delete_relationship(self, relationship_id: int) -> bool:
        return self.relationships.pop(relationship_id, None) is not None


class PostgresDbClient:
    """
    SQLAlchemy-backed implementation. Accepts any SQLAlchemy URL (e.g., Postgres or SQLite for tests).
    """

    def __init__(self, database_url: str):
        if not database_url:
            raise ValueError("DATABASE_URL is required for PostgresDbClient")
        self.engine = create_engine(
            database_url,
            future=True,
            pool_pre_ping=True,
            pool_recycle=1800,
        )
        self.Session = sessionmaker(
            bind=self.engine, class_=Session, expire_on_commit=False, future=True
        )
        Base.metadata.create_all(self.engine)
        self._seed_relation_types()

    @contextmanager
    def _session(self) -> Iterator[Session]:
        session = self.Session()
        try:
            yield session
        except SQLAlchemyError as exc:
            session.rollback()
            raise StoreError(str(exc)) from exc
        finally:
            session.close()

    def _seed_relation_types(self) -> None:
        with self._session() as session:
            if session.execute(select(func.count(RelationTypeRow.id))).scalar_one():
                return
            session.add_all(RelationTypeRow(type_name=name) for name in DEFAULT_RELATION_TYPES)
            session.commit()

    # Row mapping

    def _to_person_record(self, row: "PersonRow") -> PersonRecord:
        return PersonRecord(
            id=row.id,
            first_name=row.first_name,
            middle_name=row.middle_name,
            last_name=row.last_name,
            birth_date=row.birth_date,
            birth_place=row.birth_place,
            story=row.story,
            role=row.role,
        )

    def _to_account_record(self, row: "AccountRow") -> AccountRecord:
        return AccountRecord(
            id=row.id,
            email=row.email,
            person_id=row.person_id,
            role=row.role,
            first_name=row.first_name,
            middle_name=row.middle_name,
            last_name=row.last_name,
            birth_date=row.birth_date,
            birth_place=row.birth_place,
            failed_login_attempts=row.failed_login_attempts or 0,
            lockout_until=_as_utc(row.lockout_until),
        )

    def _to_relationship_record(
        self, session: Session, row: "RelationshipRow"
    ) -> RelationshipRecord:
        parent = session.get(PersonRow, row.parent_id)
        child = session.get(PersonRow, row.child_id)
        rel_type = session.get(RelationTypeRow, row.relation_type)
        tree = (
            session.get(FamilyTreeRow, row.family_tree_id)
            if row.family_tree_id is not None
            else None
        )
        return RelationshipRecord(
            id=row.id,
            parent_id=row.parent_id,
            child_id=row.child_id,
            relation_type=row.relation_type,
            notes=row.notes,
            family_tree_id=row.family_tree_id,
            created_at=_as_utc(row.created_at),
            parent=self._to_person_record(parent) if parent else None,
            child=self._to_person_record(child) if child else None,
            relation_type_record=(
                RelationTypeRecord(id=rel_type.id, type_name=rel_type.type_name)
                if rel_type
                else None
            ),
            family_tree=FamilyTreeRecord(id=tree.id, name=tree.name) if tree else None,
        )

    # People

    def _people_ordered(self):
        return select(PersonRow).order_by(PersonRow.first_name.asc(), PersonRow.id.asc())

    def list_people(self) -> list[PersonRecord]:
        with self._session() as session:
            rows = session.execute(self._people_ordered()).scalars().all()
            return [self._to_person_record(row) for row in rows]

    def search_people(self, query: str) -> list[PersonRecord]:
        escaped = query.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        pattern = f"%{escaped}%"
        stmt = self._people_ordered().where(
            or_(
                PersonRow.first_name.ilike(pattern, escape="\\"),
                PersonRow.middle_name.ilike(pattern, escape="\\"),
                PersonRow.last_name.ilike(pattern, escape="\\"),
            )
        )
        with self._session() as session:
            rows = session.execute(stmt).scalars().all()
            return [self._to_person_record(row) for row in rows]

    def get_person(self, person_id: int) -> Optional[PersonRecord]:
        with self._session() as session:
            row = session.get(PersonRow, person_id)
            return self._to_person_record(row) if row else None

    def get_people(self, person_ids: Iterable[int]) -> Dict[int, PersonRecord]:
        ids = set(person_ids)
        if not ids:
            return {}
        with self._session() as session:
            rows = session.execute(select(PersonRow).where(PersonRow.id.in_(ids))).scalars()
            return {row.id: self._to_person_record(row) for row in rows}

    def create_person(self, fields: dict) -> PersonRecord:
        values = {k: v for k, v in fields.items() if k in PERSON_FIELDS}
        if values.get("role") is None:
            values["role"] = DEFAULT_PERSON_ROLE
        with self._session() as session:
            row = PersonRow(**values)
            session.add(row)
            session.commit()
            session.refresh(row)
            return self._to_person_record(row)

    def update_person(self, person_id: int, fields: dict) -> Optional[PersonRecord]:
        with self._session() as session:
            row = session.get(PersonRow, person_id)
            if not row:
                return None
            for key, value in fields.items():
                if key in PERSON_FIELDS:
                    setattr(row, key, value)
            session.commit()
            session.refresh(row)
            return self._to_person_record(row)

    def delete_person(self, person_id: int) -> bool:
        with self._session() as session:
            row = session.get(PersonRow, person_id)
            if not row:
                return False
            session.execute(
                delete(RelationshipRow).where(
                    or_(
                        RelationshipRow.parent_id == person_id,
                        RelationshipRow.child_id == person_id,
                    )
                )
            )
            session.execute(
                update(AccountRow)
                .where(AccountRow.person_id == person_id)
                .values(person_id=None)
            )
            session.delete(row)
            session.commit()
            return True

    def find_people_matching(
        self, criteria: PersonMatch, limit: int = 2
    ) -> list[PersonRecord]:
        stmt = self._people_ordered().where(
            func.lower(PersonRow.first_name) == criteria.first_name.lower(),
            PersonRow.birth_date == criteria.birth_date,
        )
        for column, wanted in (
            (PersonRow.middle_name, criteria.middle_name),
            (PersonRow.last_name, criteria.last_name),
        ):
            if wanted is None:
                stmt = stmt.where(column.is_(None))
            else:
                stmt = stmt.where(func.lower(column) == wanted.lower())
        with self._session() as session:
            rows = session.execute(stmt.limit(limit)).scalars().all()
            return [self._to_person_record(row) for row in rows]

    def list_people_by_first_name(
        self, first_name: str, limit: int = 5
    ) -> list[PersonRecord]:
        stmt = (
            self._people_ordered()
            .where(func.lower(PersonRow.first_name) == first_name.lower())
            .limit(limit)
        )
        with self._session() as session:
            rows = session.execute(stmt).scalars().all()
            return [self._to_person_record(row) for row in rows]

    def is_person_claimed(self, person_id: int) -> bool:
        stmt = select(AccountRow.id).where(AccountRow.person_id == person_id).limit(1)
        with self._session() as session:
            return session.execute(stmt).first() is not None

    # Accounts

    def list_accounts(self) -> list[AccountRecord]:
        with self._session() as session:
            rows = session.execute(select(AccountRow).order_by(AccountRow.email.asc())).scalars()
            return [self._to_account_record(row) for row in rows]

    def get_account(self, account_id: str) -> Optional[AccountRecord]:
        with self._session() as session:
            row = session.get(AccountRow, account_id)
            return self._to_account_record(row) if row else None

    def get_account_by_email(self, email: str) -> Optional[AccountRecord]:
        stmt = select(AccountRow).where(func.lower(AccountRow.email) == email.lower())
        with self._session() as session:
            row = session.execute(stmt).scalars().first()
            return self._to_account_record(row) if row else None

    def create_account(self, account: AccountRecord) -> AccountRecord:
        with self._session() as session:
            row = AccountRow(
                id=account.id,
                email=account.email,
                person_id=account.person_id,
                role=account.role,
                first_name=account.first_name,
                middle_name=account.middle_name,
                last_name=account.last_name,
                birth_date=account.birth_date,
                birth_place=account.birth_place,
                failed_login_attempts=account.failed_login_attempts,
                lockout_until=account.lockout_until,
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            return self._to_account_record(row)

    def update_account(
        self, account_id: str, fields: dict
    ) -> Optional[AccountRecord]:
        with self._session() as session:
            row = session.get(AccountRow, account_id)
            if not row:
                return None
            for key, value in fields.items():
                if key in ACCOUNT_FIELDS:
                    setattr(row, key, value)
            session.commit()
            session.refresh(row)
            return self._to_account_record(row)

    def delete_account(self, account_id: str) -> bool:
        with self._session() as session:
            result = session.execute(delete(AccountRow).where(AccountRow.id == account_id))
            session.commit()
            return bool(result.rowcount)

    def record_login_failure(
        self,
        account_id: str,
        *,
        expected_attempts: int,
        attempts: int,
        lockout_until: Optional[datetime],
    ) -> bool:
        # Compare-and-set on the counter so concurrent failures cannot both
        # write the same incremented value.
        stmt = (
            update(AccountRow)
            .where(
                AccountRow.id == account_id,
                AccountRow.failed_login_attempts == expected_attempts,
            )
            .values(failed_login_attempts=attempts, lockout_until=lockout_until)
        )
        with self._session() as session:
            result = session.execute(stmt)
            session.commit()
            return result.rowcount == 1

    def reset_login_failures(self, account_id: str) -> None:
        stmt = (
            update(AccountRow)
            .where(AccountRow.id == account_id)
            .values(failed_login_attempts=0, lockout_until=None)
        )
        with self._session() as session:
            session.execute(stmt)
            session.commit()

    # Family trees and relation types

    def list_family_trees(self) -> list[FamilyTreeRecord]:
        stmt = select(FamilyTreeRow).order_by(FamilyTreeRow.name.asc(), FamilyTreeRow.id.asc())
        with self._session() as session:
            return [
                FamilyTreeRecord(id=row.id, name=row.name)
                for row in session.execute(stmt).scalars()
            ]

    def create_family_tree(self, name: str) -> FamilyTreeRecord:
        with self._session() as session:
            row = FamilyTreeRow(name=name)
            session.add(row)
            session.commit()
            session.refresh(row)
            return FamilyTreeRecord(id=row.id, name=row.name)

    def get_family_tree(self, family_tree_id: int) -> Optional[FamilyTreeRecord]:
        with self._session() as session:
            row = session.get(FamilyTreeRow, family_tree_id)
            return FamilyTreeRecord(id=row.id, name=row.name) if row else None

    def list_relation_types(self) -> list[RelationTypeRecord]:
        with self._session() as session:
            rows = session.execute(select(RelationTypeRow).order_by(RelationTypeRow.id))
            return [
                RelationTypeRecord(id=row.id, type_name=row.type_name)
                for row in rows.scalars()
            ]

    def create_relation_type(self, type_name: str) -> RelationTypeRecord:
        with self._session() as session:
            row = RelationTypeRow(type_name=type_name)
            session.add(row)
            session.commit()
            session.refresh(row)
            return RelationTypeRecord(id=row.id, type_name=row.type_name)

    def get_relation_type(self, type_id: int) -> Optional[RelationTypeRecord]:
        with self._session() as session:
            row = session.get(RelationTypeRow, type_id)
            return RelationTypeRecord(id=row.id, type_name=row.type_name) if row else None

    # Relationships

    def _select_relationships(self, *criteria) -> list[RelationshipRecord]:
        stmt = (
            select(RelationshipRow)
            .where(*criteria)
            .order_by(RelationshipRow.created_at.desc(), RelationshipRow.id.desc())
        )
        with self._session() as session:
            rows = session.execute(stmt).scalars().all()
            return [self._to_relationship_record(session, row) for row in rows]

    def list_relationships(
        self, family_tree_id: Optional[int] = None
    ) -> list[RelationshipRecord]:
        if family_tree_id is None:
            return self._select_relationships()
        return self._select_relationships(RelationshipRow.family_tree_id == family_tree_id)

    def list_relationships_by_parent(self, parent_id: int) -> list[RelationshipRecord]:
        return self._select_relationships(RelationshipRow.parent_id == parent_id)

    def list_relationships_by_child(self, child_id: int) -> list[RelationshipRecord]:
        return self._select_relationships(RelationshipRow.child_id == child_id)

    def get_relationship(self, relationship_id: int) -> Optional[RelationshipRecord]:
        with self._session() as session:
            row = session.get(RelationshipRow, relationship_id)
            return self._to_relationship_record(session, row) if row else None

    def _check_references(self, session: Session, row: "RelationshipRow") -> None:
        # SQLite does not enforce foreign keys by default, so check explicitly.
        # The pending row must not be flushed before it has been checked.
        with session.no_autoflush:
            for model, key, label in (
                (PersonRow, row.parent_id, "Person"),
                (PersonRow, row.child_id, "Person"),
                (RelationTypeRow, row.relation_type, "Relation type"),
            ):
                if session.get(model, key) is None:
                    raise MissingReference(f"{label} {key} does not exist")
            if (
                row.family_tree_id is not None
                and session.get(FamilyTreeRow, row.family_tree_id) is None
            ):
                raise MissingReference(f"Family tree {row.family_tree_id} does not exist")

    def create_relationship(self, fields: dict) -> RelationshipRecord:
        values = {k: v for k, v in fields.items() if k in RELATIONSHIP_FIELDS}
        with self._session() as session:
            row = RelationshipRow(created_at=_utcnow(), **values)
            self._check_references(session, row)
            session.add(row)
            session.commit()
            session.refresh(row)
            return self._to_relationship_record(session, row)

    def update_relationship(
        self, relationship_id: int, fields: dict
    ) -> Optional[RelationshipRecord]:
        with self._session() as session:
            row = session.get(RelationshipRow, relationship_id)
            if not row:
                return None
            for key, value in fields.items():
                if key in RELATIONSHIP_FIELDS:
                    setattr(row, key, value)
            self._check_references(session, row)
            session.commit()
            session.refresh(row)
            return self._to_relationship_record(session, row)

    def delete_relationship(self, relationship_id: int) -> bool:
        with self._session() as session:
            result = session.execute(
                delete(RelationshipRow).where(RelationshipRow.id == relationship_id)
            )
            session.commit()
            return bool(result.rowcount)


Base = declarative_base()


class PersonRow(Base):
    __tablename__ = "people"

    id = Column(Integer, primary_key=True, autoincrement=True)
    first_name = Column(String, nullable=False, index=True)
    middle_name = Column(String, nullable=True)
    last_name = Column(String, nullable=True)
    birth_date = Column(Date, nullable=True)
    birth_place = Column(String, nullable=True)
    story = Column(Text, nullable=True)
    role = Column(String, nullable=False, default=DEFAULT_PERSON_ROLE)


class AccountRow(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True, default=lambda: uuid.uuid4().hex)
    email = Column(String, nullable=False, unique=True, index=True)
    person_id = Column(
        Integer, ForeignKey("people.id", ondelete="SET NULL"), nullable=True, index=True
    )
    role = Column(String, nullable=False, default=DEFAULT_PERSON_ROLE)
    first_name = Column(String, nullable=True)
    middle_name = Column(String, nullable=True)
    last_name = Column(String, nullable=True)
    birth_date = Column(Date, nullable=True)
    birth_place = Column(String, nullable=True)
    failed_login_attempts = Column(Integer, nullable=False, default=0)
    lockout_until = Column(DateTime(timezone=True), nullable=True)


class FamilyTreeRow(Base):
    __tablename__ = "family_tree"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False)


class RelationTypeRow(Base):
    __tablename__ = "relationship_type"

    id = Column(Integer, primary_key=True, autoincrement=True)
    type_name = Column(String, nullable=False, unique=True)


class RelationshipRow(Base):
    __tablename__ = "relationships"

    id = Column(Integer, primary_key=True, autoincrement=True)
    parent_id = Column(
        Integer, ForeignKey("people.id", ondelete="CASCADE"), nullable=False, index=True
    )
    child_id = Column(
        Integer, ForeignKey("people.id", ondelete="CASCADE"), nullable=False, index=True
    )
    relation_type = Column(Integer, ForeignKey("relationship_type.id"), nullable=False)
    notes = Column(Text, nullable=True)
    family_tree_id = Column(
        Integer, ForeignKey("family_tree.id"), nullable=True, index=True
    )
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
