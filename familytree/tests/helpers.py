import unittest
from datetime import date

from fastapi.testclient import TestClient

from familytree.app import create_app
from familytree.config import Settings, get_settings
from familytree.credentials import InMemoryCredentialService
from familytree.db import AccountRecord, InMemoryDbClient, PersonRecord
from familytree.dependencies import get_credential_service, get_db_client, get_mailer
from familytree.mailer import InMemoryMailer


class ApiTestCase(unittest.TestCase):
    """Runs the app against fresh in-memory backends for every test."""

    def setUp(self):
        self.db = InMemoryDbClient()
        self.credentials = InMemoryCredentialService()
        self.mailer = InMemoryMailer()
        self.settings = Settings(
            use_in_memory_backends=True,
            contact_recipient="owner@example.com",
        )
        self.app = create_app()
        self.app.dependency_overrides[get_db_client] = lambda: self.db
        self.app.dependency_overrides[get_credential_service] = lambda: self.credentials
        self.app.dependency_overrides[get_mailer] = lambda: self.mailer
        self.app.dependency_overrides[get_settings] = lambda: self.settings
        self.client = TestClient(self.app)

    def add_person(self, first_name="Ada", **fields) -> PersonRecord:
        fields.setdefault("birth_date", date(1815, 12, 10))
        return self.db.create_person({"first_name": first_name, **fields})

    def add_account(
        self,
        email="user@example.com",
        password="secret-pass",
        role="user",
        person: PersonRecord | None = None,
    ) -> AccountRecord:
        registered = self.credentials.sign_up(email, password)
        return self.db.create_account(
            AccountRecord(
                id=registered.user.id,
                email=email,
                role=role,
                person_id=person.id if person else None,
                first_name=person.first_name if person else None,
                last_name=person.last_name if person else None,
            )
        )

    def token_for(self, email="user@example.com", password="secret-pass") -> str:
        return self.credentials.sign_in(email, password).session.access_token

    def auth_headers(self, email="user@example.com", password="secret-pass") -> dict:
        return {"Authorization": f"Bearer {self.token_for(email, password)}"}

    def login_as_user(self) -> dict:
        self.add_account()
        return self.auth_headers()

    def login_as_admin(self) -> dict:
        self.add_account(email="admin@example.com", role="admin")
        return self.auth_headers("admin@example.com")
