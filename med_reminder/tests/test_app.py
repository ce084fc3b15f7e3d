import unittest
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from unittest.mock import patch

from fastapi.testclient import TestClient
from pymongo.errors import ConfigurationError

from med_reminder import dependencies
from med_reminder.app import create_app
from med_reminder.config import Settings
from med_reminder.db import InMemoryDbClient, SqlDbClient, StorageUnavailable
from med_reminder.dependencies import get_db_client


class FailingDbClient:
    def insert(self, name, pattern, relation):
        raise StorageUnavailable("down")

    def list_all(self):
        raise StorageUnavailable("down")

    def delete_by_id(self, entry_id):
        raise StorageUnavailable("down")

    def ping(self):
        raise StorageUnavailable("down")


class MedicationApiTests(unittest.TestCase):
    def setUp(self):
        self.db = InMemoryDbClient()
        self.app = create_app()
        self.app.dependency_overrides[get_db_client] = lambda: self.db
        self.client = TestClient(self.app)

    def _save(self, **fields):
        response = self.client.post("/api/save-med", json=fields)
        self.assertEqual(response.status_code, 201)
        return response.json()

    def test_list_empty_store(self):
        response = self.client.get("/api/get-meds")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), [])

    def test_save_and_list(self):
        created = self._save(name="Aspirin", pattern="daily-08:00", relation="after-food")
        self.assertTrue(created["id"])
        self.assertEqual(created["_id"], created["id"])
        self.assertTrue(created["createdAt"].endswith("Z"))

        response = self.client.get("/api/get-meds")
        self.assertEqual(response.status_code, 200)
        meds = response.json()
        self.assertEqual(len(meds), 1)
        self.assertEqual(meds[0]["id"], created["id"])
        self.assertEqual(meds[0]["name"], "Aspirin")
        self.assertEqual(meds[0]["pattern"], "daily-08:00")
        self.assertEqual(meds[0]["relation"], "after-food")
        self.assertEqual(meds[0]["createdAt"], created["createdAt"])

    def test_list_is_newest_first(self):
        first = self._save(name="first")
        second = self._save(name="second")
        third = self._save(name="third")

        meds = self.client.get("/api/get-meds").json()
        self.assertEqual(
            [m["id"] for m in meds], [third["id"], second["id"], first["id"]]
        )
        stamps = [
            datetime.fromisoformat(m["createdAt"].replace("Z", "+00:00"))
            for m in meds
        ]
        self.assertEqual(stamps, sorted(stamps, reverse=True))

    def test_save_empty_object_stores_empty_strings(self):
        created = self._save()
        self.assertEqual(created["name"], "")
        self.assertEqual(created["pattern"], "")
        self.assertEqual(created["relation"], "")
        self.assertEqual(len(self.db.list_all()), 1)

    def test_save_without_body(self):
        response = self.client.post("/api/save-med")
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.json()["name"], "")

    def test_save_coerces_loose_fields(self):
        created = self._save(name=42, pattern=None, relation={"when": "x"}, extra="ignored")
        self.assertEqual(created["name"], "42")
        self.assertEqual(created["pattern"], "")
        self.assertEqual(created["relation"], "")
        self.assertNotIn("extra", created)

    def test_save_whole_floats_as_integers(self):
        created = self._save(name=42.0, pattern=2.5, relation=True)
        self.assertEqual(created["name"], "42")
        self.assertEqual(created["pattern"], "2.5")
        self.assertEqual(created["relation"], "true")

    def test_save_invalid_json_is_bad_request(self):
        response = self.client.post(
            "/api/save-med",
            content=b"{not json",
            headers={"Content-Type": "application/json"},
        )
        self.assertEqual(response.status_code, 400)

    def test_delete_existing(self):
        keep = self._save(name="keep")
        gone = self._save(name="gone")

        response = self.client.delete(f"/api/med/{gone['id']}")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"message": "Deleted"})

        ids = [m["id"] for m in self.client.get("/api/get-meds").json()]
        self.assertEqual(ids, [keep["id"]])

    def test_delete_unknown_id_still_succeeds(self):
        kept = self._save(name="kept")
        response = self.client.delete("/api/med/does-not-exist")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"message": "Deleted"})

        ids = [m["id"] for m in self.client.get("/api/get-meds").json()]
        self.assertEqual(ids, [kept["id"]])

    def test_concurrent_saves_get_distinct_ids(self):
        with ThreadPoolExecutor(max_workers=2) as pool:
            results = list(
                pool.map(lambda name: self._save(name=name), ["a", "b"])
            )
        self.assertNotEqual(results[0]["id"], results[1]["id"])
        ids = {m["id"] for m in self.client.get("/api/get-meds").json()}
        self.assertEqual(ids, {r["id"] for r in results})

    def test_cors_allows_any_origin(self):
        response = self.client.get(
            "/api/get-meds", headers={"Origin": "http://phone.local"}
        )
        self.assertEqual(response.headers.get("access-control-allow-origin"), "*")

    def test_health_ok(self):
        response = self.client.get("/api/health")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"status": "ok", "store": "ok"})


class StorageFailureTests(unittest.TestCase):
    def setUp(self):
        self.app = create_app()
        self.app.dependency_overrides[get_db_client] = FailingDbClient
        self.client = TestClient(self.app)

    def test_list_failure_is_server_error(self):
        response = self.client.get("/api/get-meds")
        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.text, "Internal Server Error")

    def test_save_failure_is_server_error(self):
        response = self.client.post("/api/save-med", json={"name": "x"})
        self.assertEqual(response.status_code, 500)

    def test_delete_failure_is_server_error(self):
        response = self.client.delete("/api/med/abc")
        self.assertEqual(response.status_code, 500)

    def test_health_reports_unavailable_store(self):
        response = self.client.get("/api/health")
        self.assertEqual(response.status_code, 503)
        self.assertEqual(response.json()["store"], "unavailable")

    def test_startup_survives_unreachable_store(self):
        with TestClient(self.app) as client:
            response = client.get("/api/get-meds")
        self.assertEqual(response.status_code, 500)

    def test_startup_survives_store_construction_error(self):
        def broken_store():
            raise RuntimeError("bad store configuration")

        app = create_app()
        app.dependency_overrides[get_db_client] = broken_store
        with TestClient(app, raise_server_exceptions=False) as client:
            response = client.get("/api/get-meds")
        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.text, "Internal Server Error")


class StoreBackendStartupTests(unittest.TestCase):
    def setUp(self):
        dependencies.reset_db_client()
        self.addCleanup(dependencies.reset_db_client)

    @patch("med_reminder.db.MongoClient")
    def test_listener_starts_when_mongo_host_cannot_be_resolved(self, mongo_client_cls):
        mongo_client_cls.side_effect = ConfigurationError(
            "The DNS query name does not exist: _mongodb._tcp.cluster0.example.invalid."
        )
        settings = Settings(
            _env_file=None,
            mongo_url="mongodb+srv://cluster0.example.invalid/med_reminder_db",
        )
        with patch("med_reminder.dependencies.get_settings", return_value=settings):
            with TestClient(create_app()) as client:
                health = client.get("/api/health")
                meds = client.get("/api/get-meds")
        self.assertEqual(health.status_code, 503)
        self.assertEqual(meds.status_code, 500)
        self.assertEqual(meds.text, "Internal Server Error")

    def test_sqlite_memory_store_serves_every_request(self):
        db = SqlDbClient("sqlite+pysqlite:///:memory:")
        app = create_app()
        app.dependency_overrides[get_db_client] = lambda: db
        with TestClient(app) as client:
            statuses = [
                client.post("/api/save-med", json={"name": f"med-{i}"}).status_code
                for i in range(5)
            ]
            with ThreadPoolExecutor(max_workers=4) as pool:
                statuses += list(
                    pool.map(
                        lambda i: client.post(
                            "/api/save-med", json={"name": f"par-{i}"}
                        ).status_code,
                        range(8),
                    )
                )
            listed = client.get("/api/get-meds")
        self.assertEqual(statuses, [201] * 13)
        self.assertEqual(listed.status_code, 200)
        self.assertEqual(len(listed.json()), 13)


if __name__ == "__main__":
    unittest.main()
