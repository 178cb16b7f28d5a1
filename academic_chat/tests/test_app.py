import unittest

from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from academic_chat.app import create_app
from academic_chat.dependencies import get_account_service, get_db_client, get_realtime_hub
from academic_chat.tests.utils import build_services, make_user

MESSAGES_CHANNEL = "databases.academic_chat_db.collections.messages.documents"
USERS_CHANNEL = "databases.academic_chat_db.collections.users.documents"
GROUPS_CHANNEL = "databases.academic_chat_db.collections.groups.documents"
GROUP_MEMBERS_CHANNEL = "databases.academic_chat_db.collections.group_members.documents"


class ApiTestCase(unittest.TestCase):
    def setUp(self):
        self.services = build_services()
        self.app = create_app()
        self.app.dependency_overrides[get_db_client] = lambda: self.services.db
        self.app.dependency_overrides[get_realtime_hub] = lambda: self.services.hub
        self.app.dependency_overrides[get_account_service] = lambda: self.services.accounts

        self.admin = make_user(self.services, "root", role="admin")
        self.ada = make_user(self.services, "ada")
        self.bob = make_user(self.services, "bob")
        self.tina = make_user(self.services, "tina", role="teacher")
        self.penny = make_user(self.services, "penny", approved=False)

    def login(self, username):
        """A client holding its own session cookie for `username`."""
        client = TestClient(self.app)
        response = client.post(
            "/api/auth/login",
            json={"email": f"{username}@example.edu", "password": "correct horse battery"},
        )
        self.assertEqual(response.status_code, 200, response.text)
        return client


class AuthApiTests(ApiTestCase):
    def test_health(self):
        response = TestClient(self.app).get("/api/health")
        self.assertEqual(response.json(), {"status": "ok"})

    def test_register_lands_on_pending(self):
        client = TestClient(self.app)
        response = client.post(
            "/api/auth/register",
            json={
                "username": "newbie",
                "email": "newbie@example.edu",
                "password": "correct horse battery",
                "institution_code": "NFU",
            },
        )
        self.assertEqual(response.status_code, 201, response.text)
        body = response.json()
        self.assertEqual(body["landing"], "/pending")
        self.assertEqual(body["user"]["status"], "pending")
        self.assertIn("$id", body["user"])
        self.assertIn("academic_chat_session", response.cookies)

        me = client.get("/api/auth/me")
        self.assertEqual(me.status_code, 200)
        self.assertEqual(me.json()["user"]["username"], "newbie")
        self.assertEqual(client.get("/api/groups").status_code, 403)

    def test_register_with_unknown_code(self):
        response = TestClient(self.app).post(
            "/api/auth/register",
            json={
                "username": "newbie",
                "email": "newbie@example.edu",
                "password": "correct horse battery",
                "institution_code": "NOPE",
            },
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["detail"], "Registration failed")

    def test_login_failure_and_landing(self):
        client = TestClient(self.app)
        bad = client.post(
            "/api/auth/login", json={"email": "ada@example.edu", "password": "wrong password"}
        )
        self.assertEqual(bad.status_code, 401)
        self.assertEqual(bad.json()["detail"], "Login failed")

        good = client.post(
            "/api/auth/login",
            json={"email": "root@example.edu", "password": "correct horse battery"},
        )
        self.assertEqual(good.json()["landing"], "/admin")

    def test_unauthenticated_requests(self):
        client = TestClient(self.app)
        self.assertEqual(client.get("/api/auth/me").status_code, 401)
        self.assertEqual(client.get("/api/groups").status_code, 401)

    def test_bearer_token(self):
        response = TestClient(self.app).post(
            "/api/auth/login",
            json={"email": "ada@example.edu", "password": "correct horse battery"},
        )
        token = response.cookies["academic_chat_session"]
        me = TestClient(self.app).get(
            "/api/auth/me", headers={"Authorization": f"Bearer {token}"}
        )
        self.assertEqual(me.status_code, 200)
        self.assertEqual(me.json()["user"]["$id"], self.ada.user_id)

    def test_logout(self):
        client = self.login("ada")
        self.assertEqual(client.post("/api/auth/logout").status_code, 200)
        self.assertEqual(client.get("/api/auth/me").status_code, 401)

    def test_update_profile(self):
        client = self.login("ada")
        response = client.patch("/api/auth/me", json={"username": "ada lovelace"})
        self.assertEqual(response.json()["username"], "ada lovelace")
        short = client.patch("/api/auth/me", json={"username": "al"})
        self.assertEqual(short.status_code, 422)


class AdminApiTests(ApiTestCase):
    def test_non_admin_rejected(self):
        client = self.login("ada")
        self.assertEqual(client.get("/api/admin/users").status_code, 403)
        self.assertEqual(client.get("/api/admin/users/pending").status_code, 403)

    def test_approve_pending_user(self):
        admin = self.login("root")
        pending = admin.get("/api/admin/users/pending").json()
        self.assertEqual([u["username"] for u in pending], ["penny"])

        response = admin.post(f"/api/admin/users/{self.penny.user_id}/approve")
        self.assertEqual(response.json()["status"], "approved")
        self.assertEqual(admin.get("/api/admin/users/pending").json(), [])

        penny = self.login("penny")
        self.assertEqual(penny.get("/api/groups").status_code, 200)

    def test_role_change_and_delete(self):
        admin = self.login("root")
        response = admin.patch(
            f"/api/admin/users/{self.ada.user_id}/role", json={"role": "teacher"}
        )
        self.assertEqual(response.json()["role"], "teacher")
        invalid = admin.patch(
            f"/api/admin/users/{self.ada.user_id}/role", json={"role": "overlord"}
        )
        self.assertEqual(invalid.status_code, 422)

        self.assertEqual(admin.delete(f"/api/admin/users/{self.bob.user_id}").status_code, 200)
        usernames = [u["username"] for u in admin.get("/api/admin/users").json()]
        self.assertNotIn("bob", usernames)
        self.assertEqual(admin.delete(f"/api/admin/users/{self.admin.user_id}").status_code, 422)

    def test_institutions(self):
        admin = self.login("root")
        created = admin.post(
            "/api/admin/institutions", json={"name": "Southgate College", "code": "SGC"}
        )
        self.assertEqual(created.status_code, 201)
        duplicate = admin.post(
            "/api/admin/institutions", json={"name": "Another", "code": "SGC"}
        )
        self.assertEqual(duplicate.status_code, 409)

        names = [i["institutionName"] for i in admin.get("/api/admin/institutions").json()]
        self.assertEqual(names, ["Northfield University", "Southgate College"])


class GroupApiTests(ApiTestCase):
    def setUp(self):
        super().setUp()
        self.ada_client = self.login("ada")
        self.bob_client = self.login("bob")
        response = self.ada_client.post(
            "/api/groups", json={"name": "Physics", "description": "Mechanics"}
        )
        self.assertEqual(response.status_code, 201)
        self.group_id = response.json()["$id"]

    def test_user_groups_include_announcements(self):
        names = sorted(g["name"] for g in self.ada_client.get("/api/groups").json())
        self.assertEqual(names, ["Announcements", "Physics"])

    def test_members_and_messages(self):
        url = f"/api/groups/{self.group_id}/messages"
        self.assertEqual(self.bob_client.get(url).status_code, 403)

        added = self.ada_client.post(
            f"/api/groups/{self.group_id}/members", json={"user_id": self.bob.user_id}
        )
        self.assertEqual(added.status_code, 201)
        again = self.ada_client.post(
            f"/api/groups/{self.group_id}/members", json={"user_id": self.bob.user_id}
        )
        self.assertEqual(again.status_code, 409)

        sent = self.bob_client.post(url, json={"content": "hello physics"})
        self.assertEqual(sent.status_code, 201)
        messages = self.ada_client.get(url).json()
        self.assertEqual([m["content"] for m in messages], ["hello physics"])

        # Plain members cannot manage the group.
        rename = self.bob_client.patch(f"/api/groups/{self.group_id}", json={"name": "x"})
        self.assertEqual(rename.status_code, 403)

        # Members can leave on their own.
        left = self.bob_client.delete(f"/api/groups/{self.group_id}/members/{self.bob.user_id}")
        self.assertEqual(left.status_code, 200)
        self.assertEqual(self.bob_client.get(url).status_code, 403)

    def test_pending_user_cannot_be_added(self):
        response = self.ada_client.post(
            f"/api/groups/{self.group_id}/members", json={"user_id": self.penny.user_id}
        )
        self.assertEqual(response.status_code, 422)

    def test_delete_for_me_and_everyone(self):
        self.ada_client.post(
            f"/api/groups/{self.group_id}/members", json={"user_id": self.bob.user_id}
        )
        url = f"/api/groups/{self.group_id}/messages"
        message_id = self.ada_client.post(url, json={"content": "typo"}).json()["$id"]

        forbidden = self.bob_client.post(f"/api/messages/{message_id}/delete-for-everyone")
        self.assertEqual(forbidden.status_code, 403)

        self.bob_client.post(f"/api/messages/{message_id}/delete-for-me")
        self.assertEqual(self.bob_client.get(url).json(), [])

        deleted = self.ada_client.post(f"/api/messages/{message_id}/delete-for-everyone")
        self.assertTrue(deleted.json()["deletedForEveryone"])
        self.assertEqual(deleted.json()["content"], "")

    def test_announcement_posting_rules(self):
        announcement = self.ada_client.get("/api/announcements").json()
        url = f"/api/groups/{announcement['$id']}/messages"

        self.assertEqual(self.ada_client.post(url, json={"content": "hi"}).status_code, 403)
        tina = self.login("tina")
        self.assertEqual(tina.post(url, json={"content": "Exams on Monday"}).status_code, 201)
        self.assertEqual(len(self.bob_client.get(url).json()), 1)

    def test_delete_group(self):
        self.assertEqual(self.ada_client.delete(f"/api/groups/{self.group_id}").status_code, 200)
        self.assertEqual(self.ada_client.get(f"/api/groups/{self.group_id}/messages").status_code, 404)


class DirectMessageApiTests(ApiTestCase):
    def test_direct_messages_and_threads(self):
        ada = self.login("ada")
        bob = self.login("bob")

        sent = ada.post(f"/api/dm/{self.bob.user_id}/messages", json={"content": "hi bob"})
        self.assertEqual(sent.status_code, 201)
        bob.post(f"/api/dm/{self.ada.user_id}/messages", json={"content": "hi ada"})

        messages = bob.get(f"/api/dm/{self.ada.user_id}/messages").json()
        self.assertEqual([m["content"] for m in messages], ["hi bob", "hi ada"])

        threads = bob.get("/api/dm/threads").json()
        self.assertEqual(len(threads), 1)
        self.assertEqual(threads[0]["lastMessageContent"], "hi ada")

        tina = self.login("tina")
        hidden = tina.post(f"/api/messages/{sent.json()['$id']}/read")
        self.assertEqual(hidden.status_code, 404)

    def test_cannot_message_self_or_unknown(self):
        ada = self.login("ada")
        self_dm = ada.post(f"/api/dm/{self.ada.user_id}/messages", json={"content": "me"})
        self.assertEqual(self_dm.status_code, 422)
        unknown = ada.post("/api/dm/nobody/messages", json={"content": "hello"})
        self.assertEqual(unknown.status_code, 404)

    def test_user_directory(self):
        ada = self.login("ada")
        usernames = [u["username"] for u in ada.get("/api/users").json()]
        self.assertNotIn("penny", usernames)
        results = ada.get("/api/users/search", params={"q": "ti"}).json()
        self.assertEqual([u["username"] for u in results], ["tina"])


class RealtimeApiTests(ApiTestCase):
    def test_receives_visible_message_events(self):
        ada = self.login("ada")
        bob = self.login("bob")
        with bob.websocket_connect(f"/api/realtime?channels={MESSAGES_CHANNEL}") as ws:
            ws.send_text("ping")
            self.assertEqual(ws.receive_text(), "pong")

            ada.post(f"/api/dm/{self.tina.user_id}/messages", json={"content": "not for bob"})
            ada.post(f"/api/dm/{self.bob.user_id}/messages", json={"content": "for bob"})

            event = ws.receive_json()
            self.assertEqual(event["payload"]["content"], "for bob")
            self.assertIn(
                f"{MESSAGES_CHANNEL}.{event['payload']['$id']}.create", event["events"]
            )

            status = bob.get(f"/api/users/{self.bob.user_id}/status").json()
            self.assertTrue(status["isOnline"])

    def test_private_group_events_stay_with_members(self):
        olga_user = make_user(self.services, "olga", institution_code="OTHER")
        olga = self.login("olga")
        ada = self.login("ada")
        query = f"channels={GROUPS_CHANNEL}&channels={GROUP_MEMBERS_CHANNEL}"
        with olga.websocket_connect(f"/api/realtime?{query}") as ws:
            ws.send_text("ping")
            self.assertEqual(ws.receive_text(), "pong")

            secret = ada.post("/api/groups", json={"name": "Secret", "is_private": True})
            self.assertEqual(secret.status_code, 201)
            olga.post("/api/groups", json={"name": "Mine"})

            event = ws.receive_json()
            self.assertEqual(event["payload"]["name"], "Mine")
            member_event = ws.receive_json()
            self.assertEqual(member_event["payload"]["userId"], olga_user.user_id)

    def test_membership_grants_group_events(self):
        ada = self.login("ada")
        bob = self.login("bob")
        query = (
            f"channels={GROUPS_CHANNEL}&channels={GROUP_MEMBERS_CHANNEL}"
            f"&channels={MESSAGES_CHANNEL}"
        )
        with bob.websocket_connect(f"/api/realtime?{query}") as ws:
            ws.send_text("ping")
            self.assertEqual(ws.receive_text(), "pong")

            group_id = ada.post("/api/groups", json={"name": "Secret"}).json()["$id"]
            ada.post(f"/api/groups/{group_id}/members", json={"user_id": self.bob.user_id})

            joined = ws.receive_json()
            self.assertEqual(joined["payload"]["userId"], self.bob.user_id)
            self.assertEqual(joined["payload"]["groupId"], group_id)

            ada.post(f"/api/groups/{group_id}/messages", json={"content": "welcome"})
            message = ws.receive_json()
            self.assertEqual(message["payload"]["content"], "welcome")

    def test_pending_user_rejected(self):
        penny = self.login("penny")
        with self.assertRaises(WebSocketDisconnect):
            with penny.websocket_connect(f"/api/realtime?channels={MESSAGES_CHANNEL}"):
                pass

    def test_users_channel_is_admin_only(self):
        ada = self.login("ada")
        with self.assertRaises(WebSocketDisconnect):
            with ada.websocket_connect(f"/api/realtime?channels={USERS_CHANNEL}"):
                pass
        admin = self.login("root")
        with admin.websocket_connect(f"/api/realtime?channels={USERS_CHANNEL}") as ws:
            ws.send_text("ping")
            self.assertEqual(ws.receive_text(), "pong")


if __name__ == "__main__":
    unittest.main()
