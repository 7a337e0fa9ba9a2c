from concurrent.futures import ThreadPoolExecutor

import pytest

from overlay_controller.allocator import AddressAllocator, AddressSpaceExhausted
from overlay_controller.registry import PeerRecord, PeerRegistry


def test_first_upsert_allocates_and_stores(registry):
    record = registry.upsert("A", "pk1", "203.0.113.5:51820")
    assert record == PeerRecord("A", "pk1", "203.0.113.5:51820", "10.0.0.2")
    assert "A" in registry
    assert len(registry) == 1
    assert registry.get("A") == record


def test_reupsert_refreshes_fields_but_keeps_address(registry):
    registry.upsert("A", "pk1", "203.0.113.5:51820")
    registry.upsert("B", "pk2", "203.0.113.9:51821")
    refreshed, created = registry.upsert_ex("A", "pk-new", "198.51.100.7:40000")

    assert created is False
    assert refreshed.virtual_ip == "10.0.0.2"
    assert refreshed.pubkey_b64 == "pk-new"
    assert refreshed.endpoint == "198.51.100.7:40000"
    assert registry.allocator.allocated == 2
    assert len(registry) == 2


def test_snapshot_holds_one_record_per_node(registry):
    for _ in range(3):
        registry.upsert("A", "pk1", "h:1")
    registry.upsert("B", "pk2", "h:2")

    snapshot = registry.snapshot()
    assert sorted(record.node_id for record in snapshot) == ["A", "B"]


def test_snapshot_is_a_copy(registry):
    registry.upsert("A", "pk1", "h:1")
    snapshot = registry.snapshot()
    registry.upsert("B", "pk2", "h:2")
    assert len(snapshot) == 1


def test_record_as_dict_uses_wire_keys():
    record = PeerRecord("A", "pk1", "203.0.113.5:51820", "10.0.0.2")
    assert record.as_dict() == {
        "node_id": "A",
        "pubkey_b64": "pk1",
        "endpoint": "203.0.113.5:51820",
        "virtual_ip": "10.0.0.2",
    }


def test_exhaustion_leaves_table_untouched():
    registry = PeerRegistry(AddressAllocator("10.0.0.0/30", first_host=2))
    registry.upsert("A", "pk1", "h:1")

    with pytest.raises(AddressSpaceExhausted):
        registry.upsert("B", "pk2", "h:2")

    assert "B" not in registry
    assert len(registry) == 1
    # Known nodes can still refresh without needing a new address.
    assert registry.upsert("A", "pk9", "h:9").virtual_ip == "10.0.0.2"


def test_concurrent_distinct_upserts_never_collide(registry):
    count = 128

    def join(i):
        return registry.upsert(f"node-{i}", f"pk-{i}", f"198.51.100.1:{40000 + i}")

    with ThreadPoolExecutor(max_workers=16) as pool:
        records = list(pool.map(join, range(count)))

    addresses = {record.virtual_ip for record in records}
    assert len(addresses) == count
    assert addresses == {f"10.0.0.{2 + i}" for i in range(count)}
    assert len(registry.snapshot()) == count


def test_concurrent_rejoins_of_one_node_allocate_once(registry):
    def join(i):
        return registry.upsert("same", f"pk-{i}", f"h:{i}")

    with ThreadPoolExecutor(max_workers=16) as pool:
        records = list(pool.map(join, range(64)))

    assert {record.virtual_ip for record in records} == {"10.0.0.2"}
    assert registry.allocator.allocated == 1
    assert len(registry) == 1
