"""API integration tests for the sync backend."""

import os
import tempfile
import unittest
import uuid
from unittest import mock

_DB_DIR = tempfile.mkdtemp(prefix="finance-api-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_DB_DIR, 'api.db')}"

from fastapi import HTTPException  # noqa: E402
from fastapi.concurrency import run_in_threadpool  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from finance_backend.main import app, engine, metadata, store_finance_state  # noqa: E402


class ApiTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls) -> None:
        metadata.create_all(engine)
        cls.client = TestClient(app)

    def signup(self) -> dict:
        response = self.client.post(
            "/auth/signup",
            json={"email": f"{uuid.uuid4().hex}@example.com", "password": "s3nha-forte"},
        )
        self.assertEqual(response.status_code, 200)
        return response.json()

    def headers_for(self, user: dict) -> dict:
        return {"x-user-id": str(user["id"])}

    def test_health(self) -> None:
        response = self.client.get("/health")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"status": "ok"})

    def test_signup_and_login(self) -> None:
        email = f"{uuid.uuid4().hex}@Example.com"
        created = self.client.post("/auth/signup", json={"email": email, "password": "segredo"})
        self.assertEqual(created.status_code, 200)
        self.assertEqual(created.json()["email"], email.lower())

        duplicate = self.client.post("/auth/signup", json={"email": email, "password": "outro"})
        self.assertEqual(duplicate.status_code, 409)

        login = self.client.post("/auth/login", json={"email": email, "password": "segredo"})
        self.assertEqual(login.status_code, 200)
        self.assertEqual(login.json()["id"], created.json()["id"])

        wrong = self.client.post("/auth/login", json={"email": email, "password": "errada"})
        self.assertEqual(wrong.status_code, 401)

    def test_identity_is_required(self) -> None:
        self.assertEqual(self.client.get("/finance/load").status_code, 401)
        self.assertEqual(
            self.client.put("/finance/save", json={"state": {}}).status_code,
            401,
        )
        self.assertEqual(
            self.client.get("/finance/load", headers={"x-user-id": "abc"}).status_code,
            400,
        )
        self.assertEqual(
            self.client.get("/finance/load", headers={"x-user-id": "987654321"}).status_code,
            404,
        )

    def test_load_before_first_save(self) -> None:
        user = self.signup()

        response = self.client.get("/finance/load", headers=self.headers_for(user))

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"ok": True, "data": None})

    def test_save_then_load_round_trip(self) -> None:
        user = self.signup()
        headers = self.headers_for(user)
        state = {
            "salary": 5000,
            "transactions": [{"id": "t1", "description": "Mercado", "amount": 42.5}],
            "darkMode": True,
        }

        first = self.client.put("/finance/save", json={"state": {"salary": 1}}, headers=headers)
        second = self.client.put("/finance/save", json={"state": state}, headers=headers)
        loaded = self.client.get("/finance/load", headers=headers)

        self.assertEqual(first.json(), {"ok": True})
        self.assertEqual(second.status_code, 200)
        body = loaded.json()
        self.assertTrue(body["ok"])
        self.assertEqual(body["data"]["state"], state)
        self.assertIn("updated_at", body["data"])

    def test_save_rejects_malformed_bodies(self) -> None:
        headers = self.headers_for(self.signup())

        not_object = self.client.put("/finance/save", json={"state": [1, 2]}, headers=headers)
        missing_state = self.client.put("/finance/save", json={"other": 1}, headers=headers)
        invalid_json = self.client.put("/finance/save", content=b"{oops", headers=headers)
        empty = self.client.put("/finance/save", content=b"", headers=headers)

        self.assertEqual(not_object.status_code, 400)
        self.assertEqual(missing_state.status_code, 400)
        self.assertEqual(invalid_json.status_code, 400)
        self.assertEqual(empty.status_code, 400)

    def test_save_rejects_oversized_payload(self) -> None:
        headers = self.headers_for(self.signup())
        state = {"transactions": [{"description": "x" * 200}]}

        with mock.patch.dict(os.environ, {"MAX_PAYLOAD_BYTES": "64"}):
            response = self.client.put("/finance/save", json={"state": state}, headers=headers)

        self.assertEqual(response.status_code, 413)
        loaded = self.client.get("/finance/load", headers=headers)
        self.assertIsNone(loaded.json()["data"])

    def test_save_runs_database_work_off_the_event_loop(self) -> None:
        user = self.signup()
        headers = self.headers_for(user)

        with mock.patch(
            "finance_backend.main.run_in_threadpool", wraps=run_in_threadpool
        ) as offloaded:
            response = self.client.put("/finance/save", json={"state": {"salary": 7}}, headers=headers)

        self.assertEqual(response.status_code, 200)
        offloaded.assert_called_once()
        self.assertIs(offloaded.call_args.args[0], store_finance_state)

    def test_store_finance_state_is_plain_blocking_code(self) -> None:
        user = self.signup()

        saved = store_finance_state(str(user["id"]), b'{"state": {"salary": 9}}')

        self.assertTrue(saved.ok)
        loaded = self.client.get("/finance/load", headers=self.headers_for(user))
        self.assertEqual(loaded.json()["data"]["state"], {"salary": 9})
        with self.assertRaises(HTTPException) as raised:
            store_finance_state(str(user["id"]), b"")
        self.assertEqual(raised.exception.status_code, 400)


if __name__ == "__main__":
    unittest.main()
