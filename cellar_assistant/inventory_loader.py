"""Inventory loading for the live wine list.

The spreadsheet export is fetched over HTTP (or read from a local JSON file) and
wrapped into an immutable InventorySnapshot. Refreshing produces a new snapshot;
existing snapshots are never mutated, so a chat request keeps working on the
snapshot it started with.
"""

from __future__ import annotations

import hashlib
import json
import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

import httpx

logger = logging.getLogger("cellar.inventory")

PAYLOAD_WRAPPER_KEYS = ["data", "items", "rows", "content"]

FETCH_FAILED_WARNING = "Could not load inventory. Check the LIVE sheet is public + reachable."
EMPTY_INVENTORY_WARNING = "Inventory loaded but appears empty. Check the LIVE tab export."
NOT_LOADED_WARNING = "Inventory not loaded yet. Tap refresh."


class InventoryFetchError(Exception):
    """Raised when the raw inventory feed cannot be fetched or decoded."""


@dataclass(frozen=True)
class InventorySnapshot:
    """Immutable view of the inventory as of one fetch."""
    records: Tuple[Mapping[str, Any], ...] = ()
    available: bool = False
    error: Optional[str] = None
    fetched_at: str = ""
    source: str = ""
    sha256: str = ""

    @property
    def record_count(self) -> int:
        return len(self.records)


@dataclass
class _RawPayload:
    records: List[Dict[str, Any]]
    source: str
    sha256: str


class InventoryLoader:
    def __init__(
        self,
        url: str = "",
        path: Optional[Path] = None,
        timeout: float = 15.0,
        client: Optional[httpx.Client] = None,
    ) -> None:
        """Purpose: Configure where the raw inventory feed is read from.
        Inputs/Outputs: Inputs are an export URL, a local JSON path fallback, an HTTP
            timeout, and an optional httpx.Client; no return value.
        Side Effects / State: Stores configuration only.
        Dependencies: httpx for the URL source, Path for the file source.
        Failure Modes: None at init; fetch_raw() raises InventoryFetchError.
        If Removed: The assistant has no inventory and rejects every submission.
        Testing Notes: Inject an httpx.Client with a MockTransport.
        """
        self._url = url
        self._path = path
        self._timeout = timeout
        self._client = client

    @property
    def source(self) -> str:
        if self._url:
            return self._url
        return str(self._path) if self._path else ""

    def fetch_raw(self) -> List[Dict[str, Any]]:
        """Purpose: Fetch the raw list of loosely-typed inventory records.
        Inputs/Outputs: No inputs; returns a list of dict records.
        Side Effects / State: Performs an HTTP GET or reads a file.
        Dependencies: Uses _read_bytes and _extract_records.
        Failure Modes: Network errors, non-OK status, bad JSON, or an unexpected payload
            shape raise InventoryFetchError.
        If Removed: No snapshot can be built.
        Testing Notes: Cover list payloads, wrapped payloads, and HTTP 500.
        """
        return self._fetch_payload().records

    def load(self) -> InventorySnapshot:
        """Purpose: Build a fresh InventorySnapshot without raising.
        Inputs/Outputs: No inputs; returns an InventorySnapshot.
        Side Effects / State: Performs the fetch and logs the outcome.
        Dependencies: Uses _fetch_payload.
        Failure Modes: Fetch failures become an unavailable snapshot with a warning.
        If Removed: Refresh cannot recover from a broken feed.
        Testing Notes: A failing transport yields available=False and the warning text.
        """
        fetched_at = datetime.now().isoformat(timespec="seconds")
        try:
            payload = self._fetch_payload()
        except InventoryFetchError as exc:
            logger.warning("inventory fetch failed source=%s error=%s", self.source, exc)
            return InventorySnapshot(
                available=False,
                error=FETCH_FAILED_WARNING,
                fetched_at=fetched_at,
                source=self.source,
            )

        records = tuple(dict(record) for record in payload.records)
        logger.info(
            "inventory loaded source=%s records=%s sha256=%s",
            payload.source,
            len(records),
            payload.sha256[:12],
        )
        return InventorySnapshot(
            records=records,
            available=True,
            error=None if records else EMPTY_INVENTORY_WARNING,
            fetched_at=fetched_at,
            source=payload.source,
            sha256=payload.sha256,
        )

    def _fetch_payload(self) -> _RawPayload:
        # Read bytes for hashing, then decode and unwrap the record list.
        raw_bytes = self._read_bytes()
        sha256 = hashlib.sha256(raw_bytes).hexdigest()
        try:
            data = json.loads(raw_bytes.decode("utf-8-sig"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise InventoryFetchError(f"inventory payload is not valid JSON: {exc}") from exc

        records = _extract_records(data)
        logger.debug("inventory payload records=%s", len(records))
        if records:
            logger.debug("inventory keys=%s", list(records[0].keys()))
        return _RawPayload(records=records, source=self.source, sha256=sha256)

    def _read_bytes(self) -> bytes:
        if self._url:
            return self._read_url()
        if self._path:
            try:
                return self._path.read_bytes()
            except OSError as exc:
                raise InventoryFetchError(f"cannot read {self._path}: {exc}") from exc
        raise InventoryFetchError("no inventory source configured")

    def _read_url(self) -> bytes:
        try:
            if self._client is not None:
                response = self._client.get(self._url, timeout=self._timeout, follow_redirects=True)
            else:
                response = httpx.get(self._url, timeout=self._timeout, follow_redirects=True)
            response.raise_for_status()
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            raise InventoryFetchError(f"inventory request failed: {exc}") from exc
        except ValueError as exc:
            # Malformed URLs can surface as ValueError before any request is built.
            raise InventoryFetchError(f"inventory url is invalid: {exc}") from exc
        return response.content


def _extract_records(data: Any) -> List[Dict[str, Any]]:
    """Purpose: Unwrap the record list from the export payload.
    Inputs/Outputs: Input is decoded JSON; output is a list of dict records.
    Side Effects / State: None.
    Dependencies: Uses PAYLOAD_WRAPPER_KEYS.
    Failure Modes: Raises InventoryFetchError when no list can be found.
    If Removed: Wrapped Apps Script payloads ({"data": [...]}) are rejected.
    Testing Notes: Check list, {"items": [...]}, and {"rows": [...]} payloads.
    """
    # Apps Script exports either return the list directly or wrap it.
    items: Any = None
    if isinstance(data, list):
        items = data
    elif isinstance(data, dict):
        for key in PAYLOAD_WRAPPER_KEYS:
            if data.get(key):
                items = data[key]
                break
        else:
            items = []
    if not isinstance(items, list):
        raise InventoryFetchError(f"unexpected inventory payload type: {type(data).__name__}")
    return [item for item in items if isinstance(item, dict)]


class InventoryStore:
    """Holds the most recent snapshot; refresh swaps in a new value."""

    def __init__(self, loader: InventoryLoader) -> None:
        self._loader = loader
        self._snapshot = InventorySnapshot(error=NOT_LOADED_WARNING)

    def current(self) -> InventorySnapshot:
        return self._snapshot

    def refresh(self) -> InventorySnapshot:
        # Rebinding is the only write; readers keep whatever snapshot they took.
        snapshot = self._loader.load()
        self._snapshot = snapshot
        return snapshot
