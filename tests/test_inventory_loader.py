import json

import httpx
import pytest

from conftest import SAMPLE_RECORDS, StaticLoader, json_transport, make_snapshot

from cellar_assistant.inventory_loader import (
    EMPTY_INVENTORY_WARNING,
    FETCH_FAILED_WARNING,
    NOT_LOADED_WARNING,
    InventoryFetchError,
    InventoryLoader,
    InventoryStore,
)


def _loader(payload, status_code=200):
    client = httpx.Client(transport=json_transport(payload, status_code))
    return InventoryLoader(url="https://sheets.example/exec", client=client)


def test_fetch_raw_accepts_plain_list():
    assert _loader(SAMPLE_RECORDS).fetch_raw() == SAMPLE_RECORDS


@pytest.mark.parametrize("wrapper", ["data", "items", "rows", "content"])
def test_fetch_raw_unwraps_common_wrappers(wrapper):
    assert _loader({wrapper: SAMPLE_RECORDS}).fetch_raw() == SAMPLE_RECORDS


def test_fetch_raw_skips_non_mapping_entries():
    records = _loader([{"Name": "A"}, "junk", 3, None]).fetch_raw()
    assert records == [{"Name": "A"}]


def test_fetch_raw_object_without_list_is_empty():
    assert _loader({"status": "ok"}).fetch_raw() == []


def test_fetch_raw_rejects_scalar_payload():
    with pytest.raises(InventoryFetchError):
        _loader("not a list").fetch_raw()


def test_fetch_raw_raises_on_http_error():
    with pytest.raises(InventoryFetchError):
        _loader({"data": []}, status_code=500).fetch_raw()


def test_fetch_raw_raises_on_invalid_json():
    def handler(request):
        return httpx.Response(200, content=b"<html>login</html>")

    client = httpx.Client(transport=httpx.MockTransport(handler))
    loader = InventoryLoader(url="https://sheets.example/exec", client=client)
    with pytest.raises(InventoryFetchError):
        loader.fetch_raw()


def test_fetch_raw_raises_on_network_error():
    def handler(request):
        raise httpx.ConnectError("unreachable", request=request)

    client = httpx.Client(transport=httpx.MockTransport(handler))
    loader = InventoryLoader(url="https://sheets.example/exec", client=client)
    with pytest.raises(InventoryFetchError):
        loader.fetch_raw()


def test_load_builds_available_snapshot(mock_loader):
    snapshot = mock_loader.load()
    assert snapshot.available
    assert snapshot.error is None
    assert snapshot.record_count == len(SAMPLE_RECORDS)
    assert len(snapshot.sha256) == 64


def test_load_copies_records(mock_loader):
    snapshot = mock_loader.load()
    assert isinstance(snapshot.records, tuple)
    assert snapshot.records[0] is not SAMPLE_RECORDS[0]


def test_load_failure_is_unavailable_snapshot():
    snapshot = _loader({}, status_code=503).load()
    assert not snapshot.available
    assert snapshot.records == ()
    assert snapshot.error == FETCH_FAILED_WARNING


@pytest.mark.parametrize("url", ["http://[::1", "http://a\x00b/"])
def test_load_malformed_url_is_unavailable_snapshot(url):
    snapshot = InventoryLoader(url=url, timeout=1).load()
    assert not snapshot.available
    assert snapshot.error == FETCH_FAILED_WARNING


def test_fetch_raw_malformed_url_raises_fetch_error():
    with pytest.raises(InventoryFetchError):
        InventoryLoader(url="http://[::1").fetch_raw()


def test_load_empty_inventory_warns_but_is_available():
    snapshot = _loader([]).load()
    assert snapshot.available
    assert snapshot.error == EMPTY_INVENTORY_WARNING


def test_load_reads_local_file_with_bom(tmp_path):
    path = tmp_path / "inventory.json"
    path.write_bytes(b"\xef\xbb\xbf" + json.dumps({"items": SAMPLE_RECORDS}).encode("utf-8"))
    snapshot = InventoryLoader(path=path).load()
    assert snapshot.available
    assert snapshot.record_count == len(SAMPLE_RECORDS)


def test_load_missing_file_is_unavailable(tmp_path):
    snapshot = InventoryLoader(path=tmp_path / "nope.json").load()
    assert not snapshot.available


def test_store_starts_unloaded():
    store = InventoryStore(StaticLoader(make_snapshot()))
    assert not store.current().available
    assert store.current().error == NOT_LOADED_WARNING


def test_store_refresh_replaces_snapshot_without_touching_old_one():
    first = make_snapshot()
    second = make_snapshot(records=[{"Name": "Only"}])
    store = InventoryStore(StaticLoader(first, second))

    taken = store.refresh()
    assert store.current() is first
    store.refresh()
    assert store.current() is second
    assert taken.record_count == len(SAMPLE_RECORDS)


def test_module_docstring_is_exposed():
    from cellar_assistant import inventory_loader

    assert inventory_loader.__doc__.startswith("Inventory loading")
