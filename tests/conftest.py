"""Shared fixtures for the cellar assistant test suite.

Nothing here touches the network: the completion API is replaced by a
recording fake and the inventory feed by in-memory loaders.
"""

import dataclasses
import json
import threading

import httpx
import pytest

from cellar_assistant.config import load_settings
from cellar_assistant.inventory_loader import InventoryLoader, InventorySnapshot, InventoryStore


SAMPLE_RECORDS = [
    {
        "Name": "Felsina Chianti",
        "Winemaker": "Fattoria di Felsina",
        "Grapes": "Sangiovese",
        "Region": "Toscana",
        "Country": "Italy",
        "Colour": "Red",
        "Price": "450,-",
        "Stock": "3",
        "Glass": "",
    },
    {
        "Name": "Kabinett Trocken",
        "Winemaker": "Dönnhoff",
        "Grapes": "Riesling",
        "Region": "Nahe",
        "Country": "Germany",
        "Colour": "White",
        "Price": "520,-",
        "Stock": "11",
        "Glass": "125,-",
    },
    {
        "Name": "Gamay Rouge",
        "Winemaker": "Clos Roche Blanche",
        "Grapes": "Gamay",
        "Region": "Touraine",
        "Country": "France",
        "Colour": "Red",
        "Price": "1.200,00",
        "Stock": "0",
        "Glass": "",
    },
]


class FakeCompletion:
    """Records every request; replies with a fixed text or raises."""

    def __init__(self, reply="We have it.", error=None, gate=None):
        self.reply = reply
        self.error = error
        self.gate = gate
        self.requests = []
        self.entered = threading.Event()

    def complete(self, request):
        self.requests.append(request)
        self.entered.set()
        if self.gate is not None:
            self.gate.wait(timeout=5)
        if self.error is not None:
            raise self.error
        return self.reply


class StaticLoader:
    """Loader stand-in returning prepared snapshots in order (last one repeats)."""

    def __init__(self, *snapshots):
        self._snapshots = list(snapshots)
        self.calls = 0

    def load(self):
        index = min(self.calls, len(self._snapshots) - 1)
        self.calls += 1
        return self._snapshots[index]


def make_snapshot(records=None, available=True, error=None):
    return InventorySnapshot(
        records=tuple(records if records is not None else SAMPLE_RECORDS),
        available=available,
        error=error,
        fetched_at="2026-10-18T12:00:00",
        source="test",
    )


def json_transport(payload, status_code=200):
    body = json.dumps(payload).encode("utf-8")

    def handler(request):
        return httpx.Response(status_code, content=body, headers={"content-type": "application/json"})

    return httpx.MockTransport(handler)


@pytest.fixture
def settings(tmp_path):
    return dataclasses.replace(
        load_settings(),
        gemini_api_key="test-key",
        gemini_model="gemini-test",
        inventory_url="",
        inventory_path=tmp_path / "missing.json",
        history_pairs=6,
        max_sessions=10,
    )


@pytest.fixture
def sample_records():
    return [dict(record) for record in SAMPLE_RECORDS]


@pytest.fixture
def fake_completion():
    return FakeCompletion()


@pytest.fixture
def loaded_store():
    store = InventoryStore(StaticLoader(make_snapshot()))
    store.refresh()
    return store


@pytest.fixture
def mock_loader():
    client = httpx.Client(transport=json_transport({"data": SAMPLE_RECORDS}))
    return InventoryLoader(url="https://sheets.example/exec", client=client)
