from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Protocol
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from finance_backend.config import cloud_base_url, save_debounce_seconds
from finance_backend.ledger_store import LedgerStore
from finance_backend.models import LedgerState
from finance_backend.snapshot import snapshot_from_state
from finance_backend.timers import DebouncedTask
from finance_backend.utils import get_logger

logger = get_logger(__name__)


class CloudSyncUnavailable(RuntimeError):
    """Raised when the sync endpoints cannot be reached or reject the caller."""


class CloudClient(Protocol):
    def load(self) -> dict[str, Any]: ...

    def save(self, snapshot: dict[str, Any]) -> dict[str, Any]: ...


@dataclass
class HttpCloudClient:
    user_id: Optional[str] = None
    base_url: str = field(default_factory=cloud_base_url)
    timeout: float = 8

    def load(self) -> dict[str, Any]:
        return self._request("GET", "/finance/load")

    def save(self, snapshot: dict[str, Any]) -> dict[str, Any]:
        return self._request("PUT", "/finance/save", {"state": snapshot})

    def _request(self, method: str, path: str, body: Any = None) -> dict[str, Any]:
        if not self.user_id:
            raise CloudSyncUnavailable("Not authenticated")
        data = json.dumps(body).encode("utf-8") if body is not None else None
        request = Request(
            f"{self.base_url}{path}",
            data=data,
            method=method,
            headers={"content-type": "application/json", "x-user-id": str(self.user_id)},
        )
        try:
            with urlopen(request, timeout=self.timeout) as response:
                payload = json.load(response)
        except HTTPError as exc:
            raise CloudSyncUnavailable(f"Sync endpoint returned HTTP {exc.code}") from exc
        except (URLError, TimeoutError, json.JSONDecodeError) as exc:
            raise CloudSyncUnavailable("Sync endpoint unavailable") from exc
        if not isinstance(payload, dict):
            raise CloudSyncUnavailable("Sync endpoint returned an unexpected payload")
        return payload


class CloudSync:
    """Keeps the cloud copy of the ledger in step with the local store.

    Failures never reach the caller: they are logged and the local state stays
    authoritative. Saves are debounced so a burst of mutations becomes one
    write.
    """

    def __init__(
        self,
        store: LedgerStore,
        client: CloudClient,
        delay: float | None = None,
    ) -> None:
        self.store = store
        self.client = client
        self._save_task = DebouncedTask(
            delay if delay is not None else save_debounce_seconds(),
            self.save_now,
            name="cloud-save",
        )
        self._unsubscribe: Optional[Callable[[], None]] = None
        self._applying_remote = False

    @property
    def save_pending(self) -> bool:
        return self._save_task.pending

    def start(self) -> None:
        self.load()
        if self._unsubscribe is None:
            self._unsubscribe = self.store.subscribe(self._on_change)

    def stop(self, flush: bool = True) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        if flush:
            self._save_task.flush()
        else:
            self._save_task.cancel()

    def load(self) -> bool:
        try:
            response = self.client.load()
        except CloudSyncUnavailable as exc:
            logger.warning("Cloud load failed, keeping local state: %s", exc)
            return False

        data = response.get("data")
        state = data.get("state") if isinstance(data, dict) else None
        if not isinstance(state, dict):
            logger.info("No cloud snapshot stored yet")
            return False

        self._applying_remote = True
        try:
            return self.store.replace_state(state)
        finally:
            self._applying_remote = False

    def save_now(self) -> bool:
        snapshot = snapshot_from_state(self.store.state)
        try:
            self.client.save(snapshot)
        except CloudSyncUnavailable as exc:
            logger.warning("Cloud save failed: %s", exc)
            return False
        logger.debug("Cloud snapshot saved")
        return True

    def _on_change(self, state: LedgerState) -> None:
        if self._applying_remote:
            return
        self._save_task.trigger()
