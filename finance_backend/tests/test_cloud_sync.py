import threading
import time
import unittest
from decimal import Decimal

from finance_backend.cloud_sync import CloudSync, CloudSyncUnavailable, HttpCloudClient
from finance_backend.ledger_store import LedgerStore


class FakeCloudClient:
    def __init__(self, remote_state=None) -> None:
        self.remote_state = remote_state
        self.saves = []
        self.saved = threading.Event()

    def load(self):
        if self.remote_state is None:
            return {"ok": True, "data": None}
        return {"ok": True, "data": {"state": self.remote_state, "updated_at": "2026-10-17T09:00:00"}}

    def save(self, snapshot):
        self.saves.append(snapshot)
        self.saved.set()
        return {"ok": True}


class UnavailableCloudClient:
    def load(self):
        raise CloudSyncUnavailable("offline")

    def save(self, snapshot):
        raise CloudSyncUnavailable("offline")


class CloudSyncTests(unittest.TestCase):
    def test_start_applies_remote_state_without_echoing_it(self) -> None:
        store = LedgerStore()
        client = FakeCloudClient({"salary": 1234, "darkMode": True})
        sync = CloudSync(store, client, delay=30)

        sync.start()

        self.assertEqual(store.state.salary, Decimal("1234"))
        self.assertTrue(store.state.dark_mode)
        self.assertFalse(sync.save_pending)
        sync.stop()
        self.assertEqual(client.saves, [])

    def test_stop_flushes_pending_save(self) -> None:
        store = LedgerStore()
        client = FakeCloudClient()
        sync = CloudSync(store, client, delay=30)
        sync.start()

        store.set_salary("2000")
        self.assertTrue(sync.save_pending)
        sync.stop()

        self.assertEqual(len(client.saves), 1)
        self.assertEqual(client.saves[0]["salary"], 2000)

        store.set_salary("3000")
        self.assertEqual(len(client.saves), 1)

    def test_stop_without_flush_discards_pending_save(self) -> None:
        store = LedgerStore()
        client = FakeCloudClient()
        sync = CloudSync(store, client, delay=30)
        sync.start()

        store.toggle_dark_mode()
        sync.stop(flush=False)

        self.assertEqual(client.saves, [])

    def test_burst_of_mutations_saves_once(self) -> None:
        store = LedgerStore()
        client = FakeCloudClient()
        sync = CloudSync(store, client, delay=0.05)
        sync.start()

        for salary in ("100", "200", "300"):
            store.set_salary(salary)

        self.assertTrue(client.saved.wait(2))
        time.sleep(0.2)
        sync.stop()
        self.assertEqual(len(client.saves), 1)
        self.assertEqual(client.saves[0]["salary"], 300)

    def test_unavailable_cloud_keeps_local_state(self) -> None:
        store = LedgerStore()
        store.set_salary("500")
        sync = CloudSync(store, UnavailableCloudClient(), delay=30)

        with self.assertLogs("finance_backend.cloud_sync", level="WARNING"):
            self.assertFalse(sync.load())
        with self.assertLogs("finance_backend.cloud_sync", level="WARNING"):
            self.assertFalse(sync.save_now())

        self.assertEqual(store.state.salary, Decimal("500"))

    def test_empty_cloud_leaves_store_alone(self) -> None:
        store = LedgerStore()
        store.set_salary("500")
        before = store.state

        self.assertFalse(CloudSync(store, FakeCloudClient(), delay=30).load())
        self.assertIs(store.state, before)

    def test_http_client_requires_identity(self) -> None:
        client = HttpCloudClient(user_id=None, base_url="http://localhost:9")

        with self.assertRaises(CloudSyncUnavailable):
            client.load()
        with self.assertRaises(CloudSyncUnavailable):
            client.save({})


if __name__ == "__main__":
    unittest.main()
