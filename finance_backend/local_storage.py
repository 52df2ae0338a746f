"""Versioned JSON persistence for the ledger on the local disk."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Callable

from finance_backend.config import local_storage_path
from finance_backend.ledger_store import LedgerStore
from finance_backend.models import LedgerState
from finance_backend.snapshot import (
    SNAPSHOT_VERSION,
    migrate_snapshot,
    parse_snapshot_text,
    snapshot_from_state,
)
from finance_backend.utils import get_logger

logger = get_logger(__name__)


class LocalStorage:
    """Stores ``{"state": <snapshot>, "version": N}`` in a single file."""

    def __init__(self, path: str | Path | None = None) -> None:
        self.path = Path(path or local_storage_path())

    def read(self) -> dict[str, Any] | None:
        """Return the migrated snapshot, or None when nothing usable is stored."""
        try:
            text = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError:
            logger.exception("Could not read %s", self.path)
            return None
        snapshot = _decode(text)
        if snapshot is None:
            logger.warning("Ignoring unreadable ledger file %s", self.path)
        return snapshot

    def load_into(self, store: LedgerStore) -> bool:
        snapshot = self.read()
        if snapshot is None:
            return False
        return store.replace_state(snapshot)

    def apply_external_change(self, store: LedgerStore, text: str | bytes) -> bool:
        """Replace the in-memory state with one written by another process."""
        snapshot = _decode(text)
        if snapshot is None:
            logger.warning("Ignoring external ledger change: unreadable payload")
            return False
        return store.replace_state(snapshot)

    def write(self, state: LedgerState) -> None:
        payload = {"state": snapshot_from_state(state), "version": SNAPSHOT_VERSION}
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_name(f"{self.path.name}.tmp")
        try:
            tmp_path.write_text(json.dumps(payload, ensure_ascii=False), encoding="utf-8")
            os.replace(tmp_path, self.path)
        except OSError:
            tmp_path.unlink(missing_ok=True)
            raise

    def bind(self, store: LedgerStore) -> Callable[[], None]:
        """Persist every committed state; returns the unsubscribe callable."""

        def persist(state: LedgerState) -> None:
            try:
                self.write(state)
            except OSError:
                logger.exception("Could not persist ledger to %s", self.path)

        return store.subscribe(persist)


def _decode(text: str | bytes) -> dict[str, Any] | None:
    payload = parse_snapshot_text(text)
    if payload is None or not isinstance(payload.get("state"), dict):
        return None
    return migrate_snapshot(payload["state"], payload.get("version", 1))
