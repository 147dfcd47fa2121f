"""JSON-over-HTTP record store adapter.

Talks to a store exposing the record endpoints below (the report API in
front of the primary database, or the gateway in front of the mobile
document store)::

    GET    {base}/records/{id}
    GET    {base}/records?external_id={id}
    GET    {base}/records?changed_since={revision}
    PUT    {base}/records/{id}
    DELETE {base}/records/{id}[?revision={n}]
    GET    {base}/health

Records travel as ``SyncableRecord`` JSON.  Any transport failure or
non-2xx answer (other than 404 on reads) becomes ``AdapterError``.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Any

import requests

from ..sync.errors import AdapterError
from ..sync.models import SyncableRecord
from .base import PingResult

logger = logging.getLogger(__name__)


class RestRecordAdapter:
    """``RecordStoreAdapter`` backed by a REST endpoint.

    Args:
        name: Side name (``primary``/``secondary``).
        base_url: API root, e.g. ``https://api.example.org/sync``.
        token: Optional bearer token.
        timeout: ``(connect, read)`` timeout in seconds for every call.
        insecure: Skip TLS verification (development only).
    """

    def __init__(
        self,
        name: str,
        base_url: str,
        token: str | None = None,
        timeout: tuple[float, float] = (5, 30),
        insecure: bool = False,
    ) -> None:
        self.name = name
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self.insecure = insecure
        self._thread_local = threading.local()

    @property
    def session(self) -> requests.Session:
        """Current thread's session."""
        return self._get_session()

    def _get_session(self) -> requests.Session:
        """Get or create a thread-local requests.Session."""
        if not hasattr(self._thread_local, "session"):
            self._thread_local.session = self._create_session()
        return self._thread_local.session

    def _create_session(self) -> requests.Session:
        session = requests.Session()
        session.headers["Accept"] = "application/json"
        if self.token:
            session.headers["Authorization"] = f"Bearer {self.token}"
        session.verify = not self.insecure
        return session

    # ------------------------------------------------------------------
    # Adapter protocol
    # ------------------------------------------------------------------

    def get(self, record_id: str) -> SyncableRecord | None:
        data = self._request("GET", f"/records/{record_id}", allow_404=True)
        if data is None:
            return None
        return self._parse_record(data)

    def get_by_external_id(
        self, external_id: str
    ) -> SyncableRecord | None:
        data = self._request(
            "GET",
            "/records",
            params={"external_id": external_id},
            allow_404=True,
        )
        records = self._parse_records(data)
        return records[0] if records else None

    def list_changed_since(self, revision: int) -> list[SyncableRecord]:
        data = self._request(
            "GET", "/records", params={"changed_since": revision}
        )
        return sorted(
            self._parse_records(data), key=lambda r: (r.revision, r.id)
        )

    def upsert(self, record: SyncableRecord) -> SyncableRecord:
        data = self._request(
            "PUT",
            f"/records/{record.id}",
            json=record.model_dump(mode="json"),
        )
        return self._parse_record(data) if data else record

    def delete(
        self, record_id: str, revision: int | None = None
    ) -> SyncableRecord | None:
        params = {"revision": revision} if revision is not None else None
        data = self._request(
            "DELETE",
            f"/records/{record_id}",
            params=params,
            allow_404=True,
        )
        if not data:
            return None
        return self._parse_record(data)

    def ping(self) -> PingResult:
        started = time.monotonic()
        try:
            response = self.session.get(
                f"{self.base_url}/health", timeout=self.timeout
            )
            response.raise_for_status()
        except requests.RequestException as exc:
            logger.debug("Ping of %s failed: %s", self.name, exc)
            return PingResult(connected=False, error=str(exc))
        return PingResult(
            connected=True,
            latency_ms=(time.monotonic() - started) * 1000,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _request(
        self,
        method: str,
        path: str,
        params: dict | None = None,
        json: dict | None = None,
        allow_404: bool = False,
    ) -> Any:
        url = f"{self.base_url}{path}"
        try:
            response = self.session.request(
                method,
                url,
                params=params,
                json=json,
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise AdapterError(self.name, f"{method} {path}: {exc}") from exc

        if response.status_code == 404 and allow_404:
            return None
        if response.status_code >= 400:
            raise AdapterError(
                self.name,
                f"{method} {path} returned HTTP {response.status_code}: "
                f"{response.text[:200]}",
            )
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise AdapterError(
                self.name, f"{method} {path}: invalid JSON body"
            ) from exc

    def _parse_record(self, data: Any) -> SyncableRecord:
        if isinstance(data, dict) and "record" in data:
            data = data["record"]
        try:
            return SyncableRecord.model_validate(data)
        except ValueError as exc:
            raise AdapterError(
                self.name, f"malformed record: {exc}"
            ) from exc

    def _parse_records(self, data: Any) -> list[SyncableRecord]:
        if data is None:
            return []
        if isinstance(data, dict):
            data = data.get("records", [])
        return [self._parse_record(item) for item in data]
