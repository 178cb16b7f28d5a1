import unittest

from academic_chat.db import PostgresDbClient
from academic_chat.errors import DocumentNotFoundError, StoreError
from academic_chat.query import equal, limit, order_desc
from academic_chat.realtime import InMemoryRealtimeHub, collection_channel


class PostgresDbClientTests(unittest.TestCase):
    """
    Uses SQLite via SQLAlchemy URL for fast/local testing of the Postgres client logic.
    """

    @classmethod
    def setUpClass(cls):
        cls.hub = InMemoryRealtimeHub()
        cls.db = PostgresDbClient(
            "sqlite+pysqlite:///:memory:", database_id="testdb", publisher=cls.hub
        )

    def test_create_and_get_document(self):
        doc = self.db.create_document("users", {"username": "ada", "tags": ["a"]})
        self.assertIn("$id", doc)
        self.assertEqual(doc["$collectionId"], "users")
        self.assertEqual(doc["username"], "ada")

        fetched = self.db.get_document("users", doc["$id"])
        self.assertEqual(fetched["username"], "ada")
        self.assertEqual(fetched["tags"], ["a"])
        self.assertEqual(fetched["$createdAt"], doc["$createdAt"])

    def test_system_fields_are_not_stored_as_data(self):
        doc = self.db.create_document("users", {"$id": "ignored", "username": "bob"})
        self.assertNotEqual(doc["$id"], "ignored")

    def test_explicit_id_and_duplicate(self):
        self.db.create_document("sessions", {"accountId": "x"}, document_id="fixed-id")
        with self.assertRaises(StoreError):
            self.db.create_document("sessions", {"accountId": "y"}, document_id="fixed-id")

    def test_same_id_in_different_collections(self):
        self.db.create_document("user_status", {"isOnline": True}, document_id="shared")
        self.db.create_document("presence_log", {"isOnline": False}, document_id="shared")
        self.assertTrue(self.db.get_document("user_status", "shared")["isOnline"])

    def test_update_merges_fields(self):
        doc = self.db.create_document("groups", {"name": "Physics", "isPrivate": False})
        updated = self.db.update_document("groups", doc["$id"], {"isPrivate": True})
        self.assertEqual(updated["name"], "Physics")
        self.assertTrue(updated["isPrivate"])
        self.assertTrue(self.db.get_document("groups", doc["$id"])["isPrivate"])

    def test_missing_documents_raise(self):
        with self.assertRaises(DocumentNotFoundError):
            self.db.get_document("groups", "nope")
        with self.assertRaises(DocumentNotFoundError):
            self.db.update_document("groups", "nope", {"name": "x"})
        with self.assertRaises(DocumentNotFoundError):
            self.db.delete_document("groups", "nope")

    def test_list_with_queries(self):
        for index in range(3):
            self.db.create_document(
                "messages",
                {"groupId": "g1", "content": f"m{index}", "createdAt": f"2024-01-0{index + 1}"},
            )
        self.db.create_document("messages", {"groupId": "g2", "content": "other"})

        result = self.db.list_documents(
            "messages", [equal("groupId", "g1"), order_desc("createdAt"), limit(2)]
        )
        self.assertEqual([d["content"] for d in result.documents], ["m2", "m1"])
        self.assertEqual(result.total, 2)

    def test_delete_document(self):
        doc = self.db.create_document("group_members", {"groupId": "g", "userId": "u"})
        self.db.delete_document("group_members", doc["$id"])
        with self.assertRaises(DocumentNotFoundError):
            self.db.get_document("group_members", doc["$id"])

    def test_changes_are_published(self):
        received = []
        unsubscribe = self.hub.subscribe(
            [collection_channel("testdb", "dm_threads")], received.append
        )
        try:
            doc = self.db.create_document("dm_threads", {"participant1Id": "a"})
            self.db.update_document("dm_threads", doc["$id"], {"lastMessageContent": "hi"})
            self.db.delete_document("dm_threads", doc["$id"])
        finally:
            unsubscribe()
        self.assertEqual([event.action for event in received], ["create", "update", "delete"])
        self.assertEqual(received[1].payload["lastMessageContent"], "hi")


if __name__ == "__main__":
    unittest.main()
