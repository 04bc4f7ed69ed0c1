import unittest
from datetime import datetime, timedelta, timezone

from fastapi.testclient import TestClient

from murmur.app import create_app
from murmur.db import InMemoryDbClient
from murmur.dependencies import get_db_client


class MurmurApiTests(unittest.TestCase):
    def setUp(self):
        self.client = TestClient(create_app())
        db = get_db_client()
        if isinstance(db, InMemoryDbClient):
            db.reset()

    def _signup(self, email="ana@example.com", password="hunter22"):
        response = self.client.post(
            "/api/v1/auth/register",
            json={"email": email, "password": password, "name": "Ana"},
        )
        self.assertEqual(response.status_code, 201)
        login = self.client.post(
            "/api/v1/auth/login", json={"email": email, "password": password}
        )
        self.assertEqual(login.status_code, 200)
        return {"Authorization": f"Bearer {login.json()['token']}"}

    def _create_group(self, headers, name):
        return self.client.post("/api/v1/groups", json={"name": name}, headers=headers)

    def test_protected_routes_require_bearer_token(self):
        response = self.client.get("/api/v1/groups")
        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()["error"], "unauthorized")

        response = self.client.get(
            "/api/v1/groups", headers={"Authorization": "Bearer not-a-jwt"}
        )
        self.assertEqual(response.status_code, 401)

        response = self.client.get(
            "/api/v1/groups", headers={"Authorization": "Basic abc"}
        )
        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()["error"], "unauthorized")

    def test_register_login_refresh(self):
        headers = self._signup()
        profile = self.client.get("/api/v1/user/profile", headers=headers)
        self.assertEqual(profile.status_code, 200)
        self.assertEqual(profile.json()["email"], "ana@example.com")
        self.assertEqual(profile.json()["plan"], "free")

        token = headers["Authorization"].split(" ", 1)[1]
        refreshed = self.client.post("/api/v1/auth/refresh", json={"token": token})
        self.assertEqual(refreshed.status_code, 200)
        self.assertIn("token", refreshed.json())

        duplicate = self.client.post(
            "/api/v1/auth/register",
            json={"email": "ana@example.com", "password": "hunter22", "name": "Ana"},
        )
        self.assertEqual(duplicate.status_code, 409)
        self.assertEqual(duplicate.json()["error"], "conflict")

        bad_login = self.client.post(
            "/api/v1/auth/login", json={"email": "ana@example.com", "password": "wrong!!"}
        )
        self.assertEqual(bad_login.status_code, 401)

    def test_malformed_request_is_a_validation_error(self):
        response = self.client.post(
            "/api/v1/auth/register",
            json={"email": "not-an-email", "password": "x", "name": "Ana"},
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"], "validation_error")

    def test_group_quota_over_http(self):
        headers = self._signup()
        slugs = [
            self._create_group(headers, name).json()["slug"]
            for name in ("Ask Me", "Ask Me", "Feedback")
        ]
        self.assertEqual(slugs, ["ask-me", "ask-me-1", "feedback"])

        blocked = self._create_group(headers, "Fourth")
        self.assertEqual(blocked.status_code, 429)
        self.assertEqual(blocked.json()["error"], "quota_exceeded")

        groups = self.client.get("/api/v1/groups", headers=headers).json()["groups"]
        feedback = next(g for g in groups if g["slug"] == "feedback")
        archived = self.client.delete(f"/api/v1/groups/{feedback['id']}", headers=headers)
        self.assertEqual(archived.status_code, 200)

        notes = self._create_group(headers, "Notes")
        self.assertEqual(notes.status_code, 201)
        self.assertEqual(notes.json()["slug"], "notes")

        listed = self.client.get(
            "/api/v1/groups", params={"include_archived": "true"}, headers=headers
        )
        self.assertEqual(len(listed.json()["groups"]), 4)

        again = self.client.post(
            f"/api/v1/groups/{feedback['id']}/unarchive", headers=headers
        )
        self.assertEqual(again.status_code, 429)

        deleted = self.client.delete(
            f"/api/v1/groups/{feedback['id']}",
            params={"permanent": "true"},
            headers=headers,
        )
        self.assertEqual(deleted.status_code, 200)
        missing = self.client.get(f"/api/v1/groups/{feedback['id']}", headers=headers)
        self.assertEqual(missing.status_code, 404)

    def test_other_accounts_cannot_touch_a_group(self):
        owner = self._signup()
        stranger = self._signup(email="bob@example.com")
        group = self._create_group(owner, "Mine").json()
        response = self.client.get(f"/api/v1/groups/{group['id']}", headers=stranger)
        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.json()["error"], "permission_denied")

    def test_public_send_and_moderation(self):
        headers = self._signup()
        group = self.client.post(
            "/api/v1/groups",
            json={"name": "Ask Me", "settings": {"icebreakers": ["What should I try?"]}},
            headers=headers,
        ).json()

        public = self.client.get("/api/v1/public/groups/ask-me")
        self.assertEqual(public.status_code, 200)
        self.assertEqual(public.json()["icebreakers"], ["What should I try?"])

        sent = self.client.post("/api/v1/public/send/ask-me", json={"content": "hi!"})
        self.assertEqual(sent.status_code, 201)
        self.client.post(
            "/api/v1/public/send/ask-me",
            json={"content": "it's bob", "sender_id": "bob", "reveal_name": True},
        )

        listing = self.client.get(
            f"/api/v1/groups/{group['id']}/messages",
            params={"page": 0, "page_size": 1000},
            headers=headers,
        ).json()
        self.assertEqual(listing["page"], 1)
        self.assertEqual(listing["page_size"], 20)
        self.assertEqual([m["content"] for m in listing["messages"]], ["it's bob", "hi!"])
        self.assertTrue(listing["messages"][0]["is_revealed"])
        self.assertNotIn("sender_origin", listing["messages"][0])

        message_id = listing["messages"][1]["id"]
        updated = self.client.put(
            f"/api/v1/messages/{message_id}", json={"is_read": True}, headers=headers
        )
        self.assertTrue(updated.json()["is_read"])
        removed = self.client.delete(f"/api/v1/messages/{message_id}", headers=headers)
        self.assertEqual(removed.status_code, 200)

        profile = self.client.get("/api/v1/user/profile", headers=headers).json()
        self.assertEqual(profile["message_count"], 2)

    def test_archived_group_rejects_public_messages(self):
        headers = self._signup()
        group = self._create_group(headers, "Closed").json()
        self.client.delete(f"/api/v1/groups/{group['id']}", headers=headers)

        response = self.client.post("/api/v1/public/send/closed", json={"content": "hello"})
        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.json()["error"], "group_archived")

        unknown = self.client.post("/api/v1/public/send/nobody", json={"content": "hello"})
        self.assertEqual(unknown.status_code, 404)

    def test_shared_access(self):
        headers = self._signup()
        group = self._create_group(headers, "Team").json()
        self.client.post("/api/v1/public/send/team", json={"content": "for the team"})

        expires = datetime.now(timezone.utc) + timedelta(days=7)
        created = self.client.post(
            f"/api/v1/groups/{group['id']}/share",
            json={"email": "friend@example.com", "expires_at": expires.isoformat()},
            headers=headers,
        )
        self.assertEqual(created.status_code, 201)
        grant = created.json()

        shared = self.client.get(f"/api/v1/shared/{grant['token']}/messages")
        self.assertEqual(shared.status_code, 200)
        self.assertEqual([m["content"] for m in shared.json()["messages"]], ["for the team"])

        listed = self.client.get(f"/api/v1/groups/{group['id']}/shared", headers=headers)
        self.assertEqual(len(listed.json()["shared_access"]), 1)

        revoked = self.client.delete(
            f"/api/v1/groups/{group['id']}/share/{grant['id']}", headers=headers
        )
        self.assertEqual(revoked.status_code, 200)
        refused = self.client.get(f"/api/v1/shared/{grant['token']}/messages")
        self.assertEqual(refused.status_code, 401)

        past = datetime.now(timezone.utc) - timedelta(days=1)
        stale = self.client.post(
            f"/api/v1/groups/{group['id']}/share",
            json={"email": "friend@example.com", "expires_at": past.isoformat()},
            headers=headers,
        )
        self.assertEqual(stale.status_code, 400)

    def test_user_settings_and_deletion(self):
        headers = self._signup()
        profile = self.client.put(
            "/api/v1/user/profile", json={"name": "Ana B"}, headers=headers
        )
        self.assertEqual(profile.json()["name"], "Ana B")

        notify = self.client.put(
            "/api/v1/user/notifications", json={"email": False}, headers=headers
        )
        self.assertEqual(notify.json()["notify_settings"], {"email": False})

        wrong = self.client.put(
            "/api/v1/user/password",
            json={"current_password": "nope-nope", "new_password": "another1"},
            headers=headers,
        )
        self.assertEqual(wrong.status_code, 400)

        changed = self.client.put(
            "/api/v1/user/password",
            json={"current_password": "hunter22", "new_password": "another1"},
            headers=headers,
        )
        self.assertEqual(changed.status_code, 200)

        deleted = self.client.delete("/api/v1/user", headers=headers)
        self.assertEqual(deleted.status_code, 200)
        gone = self.client.get("/api/v1/user/profile", headers=headers)
        self.assertEqual(gone.status_code, 404)

    def test_healthz(self):
        response = self.client.get("/api/v1/healthz")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["status"], "ok")
        self.assertEqual(response.json()["checks"]["database"], "ok")


if __name__ == "__main__":
    unittest.main()
