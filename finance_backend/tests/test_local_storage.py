import json
import tempfile
import unittest
from unittest import mock
from datetime import datetime
from pathlib import Path

from finance_backend.ledger_store import LedgerStore
from finance_backend.local_storage import LocalStorage
from finance_backend.snapshot import SNAPSHOT_VERSION

NOW = datetime(2026, 10, 17, 9, 0)


class LocalStorageTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.path = Path(self._tmp.name) / "ledger" / "finance.json"
        self.storage = LocalStorage(self.path)

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def test_bound_store_persists_every_commit(self) -> None:
        store = LedgerStore()
        unsubscribe = self.storage.bind(store)
        store.set_salary("4200")
        store.add_transaction(
            description="Padaria",
            amount="8",
            category="Alimentação",
            type="expense",
            date=NOW,
            now=NOW,
        )
        unsubscribe()

        payload = json.loads(self.path.read_text(encoding="utf-8"))
        self.assertEqual(payload["version"], SNAPSHOT_VERSION)
        self.assertEqual(payload["state"]["salary"], 4200)
        self.assertEqual(len(payload["state"]["transactions"]), 1)

        reloaded = LedgerStore()
        self.assertTrue(self.storage.load_into(reloaded))
        self.assertEqual(reloaded.state.transactions, store.state.transactions)

    def test_missing_file_reads_as_nothing(self) -> None:
        self.assertIsNone(self.storage.read())
        self.assertFalse(self.storage.load_into(LedgerStore()))

    def test_unreadable_file_is_ignored(self) -> None:
        self.path.parent.mkdir(parents=True)
        self.path.write_text("{broken", encoding="utf-8")

        with self.assertLogs("finance_backend.local_storage", level="WARNING"):
            self.assertIsNone(self.storage.read())

    def test_unversioned_file_is_migrated(self) -> None:
        self.path.parent.mkdir(parents=True)
        self.path.write_text(
            json.dumps({"state": {"transactions": [{"description": "Velho", "amount": "7"}]}}),
            encoding="utf-8",
        )

        snapshot = self.storage.read()

        self.assertEqual(snapshot["transactions"][0]["currency"], "BRL")
        self.assertEqual(snapshot["transactions"][0]["exchangeRate"], 1)

    def test_non_finite_version_is_treated_as_unversioned(self) -> None:
        self.path.parent.mkdir(parents=True)
        self.path.write_text('{"state": {}, "version": Infinity}', encoding="utf-8")

        self.assertIsInstance(self.storage.read(), dict)
        self.assertTrue(self.storage.load_into(LedgerStore()))

    def test_failed_write_removes_temporary_file(self) -> None:
        with mock.patch("finance_backend.local_storage.os.replace", side_effect=OSError):
            with self.assertRaises(OSError):
                self.storage.write(LedgerStore().state)

        self.assertFalse(self.path.with_name(f"{self.path.name}.tmp").exists())
        self.assertFalse(self.path.exists())

    def test_external_change_replaces_state(self) -> None:
        store = LedgerStore()

        self.assertFalse(self.storage.apply_external_change(store, "not json"))
        changed = json.dumps({"state": {"salary": 900, "darkMode": True}, "version": 2})
        self.assertTrue(self.storage.apply_external_change(store, changed))

        self.assertEqual(store.state.salary, 900)
        self.assertTrue(store.state.dark_mode)


if __name__ == "__main__":
    unittest.main()
