import unittest

from familytree.db import StoreError
from familytree.tests.helpers import ApiTestCase


class HealthAndGatekeeperTests(ApiTestCase):
    def test_health(self):
        response = self.client.get("/")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"status": "ok", "message": "Server is running"})

    def test_missing_token(self):
        response = self.client.get("/people")
        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()["detail"], "No token provided")

    def test_malformed_authorization_header(self):
        response = self.client.get("/people", headers={"Authorization": "Token abc"})
        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()["detail"], "Invalid token format")

    def test_unknown_token(self):
        response = self.client.get("/people", headers={"Authorization": "Bearer nope"})
        self.assertEqual(response.status_code, 401)

    def test_credential_without_account_row(self):
        self.credentials.sign_up("ghost@example.com", "secret-pass")
        headers = self.auth_headers("ghost@example.com")

        response = self.client.get("/users/profile", headers=headers)

        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()["detail"], "User not found")

    def test_admin_route_rejects_plain_user(self):
        headers = self.login_as_user()

        response = self.client.get("/users", headers=headers)

        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.json()["detail"], "Forbidden: Insufficient privileges")


class PeopleRoutesTests(ApiTestCase):
    def setUp(self):
        super().setUp()
        self.headers = self.login_as_user()

    def test_create_and_fetch_person(self):
        response = self.client.post(
            "/people",
            json={
                "first_name": " Charles ",
                "middle_name": "",
                "last_name": "Babbage",
                "birth_date": "1791-12-26",
            },
            headers=self.headers,
        )

        self.assertEqual(response.status_code, 201)
        created = response.json()
        self.assertEqual(created["first_name"], "Charles")
        self.assertIsNone(created["middle_name"])
        self.assertEqual(created["name"], "Charles Babbage")
        self.assertEqual(created["role"], "user")

        fetched = self.client.get(f"/people/{created['id']}", headers=self.headers)
        self.assertEqual(fetched.status_code, 200)
        self.assertEqual(fetched.json()["birth_date"], "1791-12-26")

    def test_create_requires_birth_date(self):
        response = self.client.post(
            "/people", json={"first_name": "Charles"}, headers=self.headers
        )
        self.assertEqual(response.status_code, 400)

    def test_list_is_ordered_by_first_name(self):
        self.add_person("Mary")
        self.add_person("Ada")

        response = self.client.get("/people", headers=self.headers)

        self.assertEqual([p["first_name"] for p in response.json()], ["Ada", "Mary"])

    def test_search_matches_any_name_part(self):
        self.add_person("Ada", last_name="Lovelace")
        self.add_person("Annabella", last_name="Milbanke")

        response = self.client.get("/people/search", params={"q": "LOVE"}, headers=self.headers)

        self.assertEqual(response.status_code, 200)
        self.assertEqual([p["last_name"] for p in response.json()], ["Lovelace"])

    def test_search_requires_query(self):
        response = self.client.get("/people/search", params={"q": "  "}, headers=self.headers)
        self.assertEqual(response.status_code, 400)

    def test_partial_update_keeps_unspecified_fields(self):
        person = self.add_person("Ada", last_name="Byron", birth_place="London")

        response = self.client.put(
            f"/people/{person.id}",
            json={"last_name": "Lovelace", "birth_place": None},
            headers=self.headers,
        )

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["last_name"], "Lovelace")
        self.assertIsNone(body["birth_place"])
        self.assertEqual(body["first_name"], "Ada")

    def test_update_cannot_clear_first_name(self):
        person = self.add_person("Ada")

        response = self.client.put(
            f"/people/{person.id}", json={"first_name": ""}, headers=self.headers
        )

        self.assertEqual(response.status_code, 400)
        self.assertEqual(self.db.get_person(person.id).first_name, "Ada")

    def test_missing_person_is_not_found(self):
        self.assertEqual(self.client.get("/people/999", headers=self.headers).status_code, 404)
        self.assertEqual(
            self.client.put("/people/999", json={"story": "x"}, headers=self.headers).status_code,
            404,
        )

    def test_details_render_story_links(self):
        mother = self.add_person("Annabella", last_name="Milbanke")
        person = self.add_person(
            "Ada", story=f"Daughter of [person:{mother.id}] & [person:404] <b>"
        )

        response = self.client.get(f"/people/details/{person.id}", headers=self.headers)

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["story"], person.story)
        self.assertEqual(
            body["story_html"],
            f'Daughter of <a href="/people/details/{mother.id}" class="person-link" '
            f'data-person-id="{mother.id}">Annabella Milbanke</a> &amp; '
            '<a href="/people/details/404" class="person-link" '
            'data-person-id="404">Unknown (404)</a> &lt;b&gt;',
        )

    def test_plain_user_cannot_set_person_role(self):
        person = self.add_person("Ada", last_name="Lovelace")

        created = self.client.post(
            "/people",
            json={"first_name": "Mallory", "birth_date": "1990-01-01", "role": "admin"},
            headers=self.headers,
        )
        updated = self.client.put(
            f"/people/{person.id}", json={"role": "admin"}, headers=self.headers
        )

        self.assertEqual(created.status_code, 403)
        self.assertEqual(updated.status_code, 403)
        self.assertEqual(self.db.search_people("Mallory"), [])
        self.assertEqual(self.db.get_person(person.id).role, "user")

        signup = self.client.post(
            "/auth/signup",
            json={
                "email": "ada@example.com",
                "password": "analytical",
                "first_name": "Ada",
                "last_name": "Lovelace",
                "birth_date": "1815-12-10",
            },
        )
        self.assertEqual(signup.json()["user"]["role"], "user")

    def test_admin_can_set_person_role(self):
        headers = self.login_as_admin()
        person = self.add_person("Ada")

        created = self.client.post(
            "/people",
            json={"first_name": "Charles", "birth_date": "1791-12-26", "role": "admin"},
            headers=headers,
        )
        updated = self.client.put(
            f"/people/{person.id}", json={"role": "editor"}, headers=headers
        )

        self.assertEqual(created.status_code, 201)
        self.assertEqual(created.json()["role"], "admin")
        self.assertEqual(updated.json()["role"], "editor")

    def test_delete_requires_admin(self):
        person = self.add_person("Ada")

        response = self.client.delete(f"/people/{person.id}", headers=self.headers)

        self.assertEqual(response.status_code, 403)
        self.assertIsNotNone(self.db.get_person(person.id))

    def test_admin_delete_removes_edges_and_detaches_accounts(self):
        admin_headers = self.login_as_admin()
        parent = self.add_person("Annabella")
        child = self.add_person("Ada")
        self.db.create_relationship(
            {"parent_id": parent.id, "child_id": child.id, "relation_type": 1}
        )
        owner = self.add_account(email="ada@example.com", person=child)

        response = self.client.delete(f"/people/{child.id}", headers=admin_headers)

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["message"], "Person deleted successfully")
        self.assertIsNone(self.db.get_person(child.id))
        self.assertEqual(self.db.list_relationships_by_parent(parent.id), [])
        self.assertIsNone(self.db.get_account(owner.id).person_id)

        again = self.client.delete(f"/people/{child.id}", headers=admin_headers)
        self.assertEqual(again.status_code, 404)


class StoryPermissionTests(ApiTestCase):
    def setUp(self):
        super().setUp()
        self.person = self.add_person("Ada")
        self.other = self.add_person("Charles")
        self.add_account(email="ada@example.com", person=self.person)
        self.owner_headers = self.auth_headers("ada@example.com")

    def test_owner_can_save_own_story(self):
        response = self.client.put(
            f"/people/{self.person.id}/story",
            json={"story": f"I worked with [person:{self.other.id}]."},
            headers=self.owner_headers,
        )

        self.assertEqual(response.status_code, 200)
        self.assertIn('data-person-id="%d">Charles</a>' % self.other.id, response.json()["story_html"])
        self.assertEqual(
            self.db.get_person(self.person.id).story,
            f"I worked with [person:{self.other.id}].",
        )

    def test_owner_cannot_save_someone_elses_story(self):
        response = self.client.put(
            f"/people/{self.other.id}/story",
            json={"story": "Rewritten"},
            headers=self.owner_headers,
        )

        self.assertEqual(response.status_code, 403)
        self.assertIsNone(self.db.get_person(self.other.id).story)

    def test_admin_can_save_any_story(self):
        headers = self.login_as_admin()

        response = self.client.put(
            f"/people/{self.other.id}/story", json={"story": "Engines"}, headers=headers
        )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["story_html"], "Engines")

    def test_blank_story_clears_it(self):
        response = self.client.put(
            f"/people/{self.person.id}/story",
            json={"story": "   "},
            headers=self.owner_headers,
        )

        self.assertEqual(response.status_code, 200)
        self.assertIsNone(response.json()["story"])
        self.assertEqual(response.json()["story_html"], "")


class RelationshipRoutesTests(ApiTestCase):
    def setUp(self):
        super().setUp()
        self.headers = self.login_as_user()
        self.parent = self.add_person("Annabella", last_name="Milbanke")
        self.child = self.add_person("Ada", last_name="Lovelace")
        self.tree = self.db.create_family_tree("Byron")

    def _create(self, **overrides):
        payload = {
            "parent_id": self.parent.id,
            "child_id": self.child.id,
            "relation_type": 1,
            "family_tree_id": self.tree.id,
        }
        payload.update(overrides)
        return self.client.post("/relationships", json=payload, headers=self.headers)

    def test_create_returns_hydrated_edge(self):
        response = self._create(notes="  only child ")

        self.assertEqual(response.status_code, 201)
        body = response.json()
        self.assertEqual(body["notes"], "only child")
        self.assertEqual(body["parent"]["name"], "Annabella Milbanke")
        self.assertEqual(body["child"]["id"], self.child.id)
        self.assertEqual(body["relation_type"], {"id": 1, "type_name": "biological"})
        self.assertEqual(body["family_tree"], {"id": self.tree.id, "name": "Byron"})

    def test_self_edge_is_rejected(self):
        response = self._create(child_id=self.parent.id)
        self.assertEqual(response.status_code, 400)
        self.assertEqual(self.db.relationships, {})

    def test_unknown_references_are_rejected(self):
        self.assertEqual(self._create(child_id=999).status_code, 400)
        self.assertEqual(self._create(relation_type=99).status_code, 400)
        self.assertEqual(self._create(family_tree_id=77).status_code, 400)
        self.assertEqual(self.db.relationships, {})

    def test_listing_without_tree_returns_family_trees(self):
        response = self.client.get("/relationships", headers=self.headers)

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), [{"id": self.tree.id, "name": "Byron"}])

    def test_listing_by_tree_returns_edges(self):
        created = self._create().json()
        other_tree = self.db.create_family_tree("Babbage")

        response = self.client.get(
            "/relationships", params={"family_tree_id": self.tree.id}, headers=self.headers
        )
        empty = self.client.get(
            "/relationships", params={"family_tree_id": other_tree.id}, headers=self.headers
        )
        missing = self.client.get(
            "/relationships", params={"family_tree_id": 999}, headers=self.headers
        )

        self.assertEqual([r["id"] for r in response.json()], [created["id"]])
        self.assertEqual(empty.json(), [])
        self.assertEqual(missing.status_code, 404)

    def test_person_view_splits_roles(self):
        grandchild = self.add_person("Byron", last_name="King")
        first = self._create().json()
        second = self._create(parent_id=self.child.id, child_id=grandchild.id).json()

        response = self.client.get(f"/relationships/person/{self.child.id}", headers=self.headers)

        body = response.json()
        self.assertEqual([r["id"] for r in body["asParent"]], [second["id"]])
        self.assertEqual([r["id"] for r in body["asChild"]], [first["id"]])
        self.assertEqual({r["id"] for r in body["all"]}, {first["id"], second["id"]})

        by_parent = self.client.get(f"/relationships/parent/{self.parent.id}", headers=self.headers)
        by_child = self.client.get(f"/relationships/child/{grandchild.id}", headers=self.headers)
        self.assertEqual([r["id"] for r in by_parent.json()], [first["id"]])
        self.assertEqual([r["id"] for r in by_child.json()], [second["id"]])

    def test_update_edge(self):
        created = self._create().json()

        response = self.client.put(
            f"/relationships/{created['id']}",
            json={"relation_type": 2, "notes": "raised by"},
            headers=self.headers,
        )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["relation_type"]["type_name"], "adoptive")
        self.assertEqual(response.json()["notes"], "raised by")

    def test_update_cannot_create_self_edge(self):
        created = self._create().json()

        response = self.client.put(
            f"/relationships/{created['id']}",
            json={"child_id": self.parent.id},
            headers=self.headers,
        )

        self.assertEqual(response.status_code, 400)
        self.assertEqual(self.db.get_relationship(created["id"]).child_id, self.child.id)

    def test_update_unknown_edge(self):
        response = self.client.put(
            "/relationships/999", json={"notes": "x"}, headers=self.headers
        )
        self.assertEqual(response.status_code, 404)

    def test_delete_edge(self):
        created = self._create().json()

        response = self.client.delete(f"/relationships/{created['id']}", headers=self.headers)

        self.assertEqual(response.status_code, 200)
        self.assertEqual(self.db.relationships, {})
        again = self.client.delete(f"/relationships/{created['id']}", headers=self.headers)
        self.assertEqual(again.status_code, 404)

    def test_requires_authentication(self):
        self.assertEqual(self.client.get("/relationships").status_code, 401)


class UserRoutesTests(ApiTestCase):
    def setUp(self):
        super().setUp()
        self.person = self.add_person("Ada", last_name="Lovelace")
        self.user = self.add_account(email="ada@example.com", person=self.person)
        self.user_headers = self.auth_headers("ada@example.com")

    def test_profile(self):
        response = self.client.get("/users/profile", headers=self.user_headers)

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["id"], self.user.id)
        self.assertEqual(body["name"], "Ada Lovelace")
        self.assertEqual(body["person_id"], self.person.id)

    def test_admin_lists_users_with_lockout_state(self):
        headers = self.login_as_admin()

        response = self.client.get("/users", headers=headers)

        self.assertEqual(response.status_code, 200)
        emails = [u["email"] for u in response.json()]
        self.assertEqual(emails, ["ada@example.com", "admin@example.com"])
        self.assertEqual(response.json()[0]["failed_login_attempts"], 0)

    def test_admin_creates_user_with_credentials(self):
        headers = self.login_as_admin()
        person = self.add_person("Charles")

        response = self.client.post(
            "/users",
            json={
                "email": "Charles@Example.com",
                "password": "difference",
                "person_id": person.id,
                "first_name": "Charles",
            },
            headers=headers,
        )

        self.assertEqual(response.status_code, 201)
        body = response.json()
        self.assertEqual(body["email"], "charles@example.com")
        self.assertEqual(body["role"], "user")
        login = self.client.post(
            "/auth/login", json={"email": "charles@example.com", "password": "difference"}
        )
        self.assertEqual(login.status_code, 200)
        self.assertEqual(login.json()["user"]["id"], body["id"])

    def test_admin_create_rejects_duplicate_email_and_unknown_person(self):
        headers = self.login_as_admin()

        duplicate = self.client.post("/users", json={"email": "ada@example.com"}, headers=headers)
        unknown = self.client.post(
            "/users", json={"email": "new@example.com", "person_id": 999}, headers=headers
        )

        self.assertEqual(duplicate.status_code, 409)
        self.assertEqual(unknown.status_code, 400)

    def test_user_updates_own_profile(self):
        response = self.client.put(
            f"/users/{self.user.id}",
            json={"birth_place": "London", "middle_name": "Augusta"},
            headers=self.user_headers,
        )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["birth_place"], "London")
        self.assertEqual(self.db.get_account(self.user.id).middle_name, "Augusta")

    def test_user_cannot_escalate_role(self):
        response = self.client.put(
            f"/users/{self.user.id}", json={"role": "admin"}, headers=self.user_headers
        )

        self.assertEqual(response.status_code, 403)
        self.assertEqual(self.db.get_account(self.user.id).role, "user")

    def test_user_cannot_update_someone_else(self):
        other = self.add_account(email="other@example.com")

        response = self.client.put(
            f"/users/{other.id}", json={"first_name": "Mallory"}, headers=self.user_headers
        )

        self.assertEqual(response.status_code, 403)

    def test_email_change_conflict(self):
        self.add_account(email="taken@example.com")
        headers = self.login_as_admin()

        response = self.client.put(
            f"/users/{self.user.id}", json={"email": "taken@example.com"}, headers=headers
        )

        self.assertEqual(response.status_code, 409)
        self.assertEqual(self.db.get_account(self.user.id).email, "ada@example.com")

    def test_user_cannot_change_own_email(self):
        response = self.client.put(
            f"/users/{self.user.id}", json={"email": "other@example.com"}, headers=self.user_headers
        )

        self.assertEqual(response.status_code, 403)
        self.assertEqual(self.db.get_account(self.user.id).email, "ada@example.com")

    def test_lockout_still_applies_after_profile_update(self):
        self.client.put(
            f"/users/{self.user.id}", json={"birth_place": "London"}, headers=self.user_headers
        )
        for _ in range(5):
            self.client.post(
                "/auth/login", json={"email": "ada@example.com", "password": "wrong"}
            )

        response = self.client.post(
            "/auth/login", json={"email": "ada@example.com", "password": "secret-pass"}
        )

        self.assertEqual(response.status_code, 403)
        self.assertEqual(self.db.get_account(self.user.id).failed_login_attempts, 5)

    def test_admin_email_change_moves_the_login(self):
        headers = self.login_as_admin()

        response = self.client.put(
            f"/users/{self.user.id}", json={"email": "countess@example.com"}, headers=headers
        )

        self.assertEqual(response.status_code, 200)
        old = self.client.post(
            "/auth/login", json={"email": "ada@example.com", "password": "secret-pass"}
        )
        self.assertEqual(old.status_code, 401)
        self.client.post(
            "/auth/login", json={"email": "countess@example.com", "password": "wrong"}
        )
        self.assertEqual(self.db.get_account(self.user.id).failed_login_attempts, 1)
        new = self.client.post(
            "/auth/login", json={"email": "countess@example.com", "password": "secret-pass"}
        )
        self.assertEqual(new.status_code, 200)
        self.assertEqual(new.json()["user"]["id"], self.user.id)

    def test_admin_email_change_for_account_without_credential(self):
        headers = self.login_as_admin()
        created = self.client.post(
            "/users", json={"email": "local@example.com"}, headers=headers
        ).json()

        response = self.client.put(
            f"/users/{created['id']}", json={"email": "moved@example.com"}, headers=headers
        )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["email"], "moved@example.com")

    def test_admin_cannot_attach_claimed_person(self):
        headers = self.login_as_admin()
        other = self.add_account(email="other@example.com")

        created = self.client.post(
            "/users",
            json={"email": "dup@example.com", "person_id": self.person.id},
            headers=headers,
        )
        updated = self.client.put(
            f"/users/{other.id}", json={"person_id": self.person.id}, headers=headers
        )

        self.assertEqual(created.status_code, 409)
        self.assertEqual(updated.status_code, 409)
        self.assertIsNone(self.db.get_account_by_email("dup@example.com"))
        self.assertIsNone(self.db.get_account(other.id).person_id)

    def test_admin_can_resend_current_person(self):
        headers = self.login_as_admin()

        response = self.client.put(
            f"/users/{self.user.id}",
            json={"person_id": self.person.id, "last_name": "King"},
            headers=headers,
        )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["last_name"], "King")

    def test_admin_create_discards_credential_when_insert_fails(self):
        headers = self.login_as_admin()
        original = self.db.create_account

        def failing_create(account):
            raise StoreError("insert failed")

        self.db.create_account = failing_create
        try:
            response = self.client.post(
                "/users",
                json={"email": "new@example.com", "password": "difference"},
                headers=headers,
            )
        finally:
            self.db.create_account = original

        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.json()["detail"], "Failed to create account")
        self.assertNotIn("new@example.com", self.credentials.users)
        self.assertIsNone(self.db.get_account_by_email("new@example.com"))

    def test_admin_updates_role_and_unknown_user(self):
        headers = self.login_as_admin()

        response = self.client.put(
            f"/users/{self.user.id}", json={"role": "admin"}, headers=headers
        )
        missing = self.client.put("/users/nope", json={"role": "admin"}, headers=headers)

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["role"], "admin")
        self.assertEqual(missing.status_code, 404)

    def test_admin_deletes_user_and_credential(self):
        headers = self.login_as_admin()

        response = self.client.delete(f"/users/{self.user.id}", headers=headers)

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["message"], "User deleted")
        self.assertIsNone(self.db.get_account(self.user.id))
        self.assertNotIn("ada@example.com", self.credentials.users)
        self.assertIsNotNone(self.db.get_person(self.person.id))


class ContactRoutesTests(ApiTestCase):
    def test_contact_sends_escaped_message(self):
        response = self.client.post(
            "/contact",
            json={"email": "Visitor@Example.com", "message": "Hello <there>\nBye"},
        )

        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.json()["success"])
        self.assertEqual(len(self.mailer.outbox), 1)
        sent = self.mailer.outbox[0]
        self.assertEqual(sent.recipient, "owner@example.com")
        self.assertEqual(sent.reply_to, "visitor@example.com")
        self.assertEqual(sent.subject, "New Contact From Family Tree Website")
        self.assertIn("Hello &lt;there&gt;<br>Bye", sent.html)

    def test_contact_validates_payload(self):
        bad_email = self.client.post("/contact", json={"email": "nope", "message": "hi"})
        blank = self.client.post("/contact", json={"email": "a@example.com", "message": "  "})

        self.assertEqual(bad_email.status_code, 400)
        self.assertEqual(blank.status_code, 400)
        self.assertEqual(self.mailer.outbox, [])

    def test_contact_without_recipient_fails(self):
        self.settings.contact_recipient = None

        response = self.client.post("/contact", json={"email": "a@example.com", "message": "hi"})

        self.assertEqual(response.status_code, 500)
        self.assertEqual(self.mailer.outbox, [])


if __name__ == "__main__":
    unittest.main()
