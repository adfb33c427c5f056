import pytest

from logpart.errors import StoreUnavailable
from logpart.parser import LogEntry
from logpart.store import DEFAULT_PARTITION, encode_entry, segment_path
from logpart.writer import PartitionRef, PartitionWriter


def entry(status=200, url="/index"):
    return LogEntry("192.168.0.1", "2025-02-25 13:00:15", url, status, "Firefox/98.0")


def test_write_places_entry_in_its_status_partition(store):
    writer = PartitionWriter(store)
    for status in (200, 500, 404, 200):
        ref = writer.write(entry(status))
        assert ref.key == status
        assert status in store.list_partitions()

    assert store.list_partitions() == {200, 404, 500}
    assert [e.status_code for e in store.scan(200)] == [200, 200]
    assert [e.status_code for e in store.scan(404)] == [404]


def test_out_of_range_status_goes_to_default_partition(store):
    ref = PartitionWriter(store).write(entry(status=777))
    assert ref == PartitionRef(DEFAULT_PARTITION, segment_path(DEFAULT_PARTITION, 0))
    assert [e.status_code for e in store.scan(DEFAULT_PARTITION)] == [777]


def test_rotates_segment_on_record_count(store):
    writer = PartitionWriter(store, segment_max_records=2)
    refs = [writer.write(entry(url=f"/{i}")) for i in range(5)]

    assert [ref.segment for ref in refs] == [
        segment_path(200, 0), segment_path(200, 0),
        segment_path(200, 1), segment_path(200, 1),
        segment_path(200, 2),
    ]
    assert store.segments(200) == [segment_path(200, i) for i in range(3)]
    assert [e.url for e in store.scan(200)] == [f"/{i}" for i in range(5)]


def test_rotates_segment_on_size(store):
    record_size = len(encode_entry(entry(url="/a")))
    writer = PartitionWriter(store, segment_max_bytes=record_size * 2 + 1)
    writer.write_batch([entry(url=u) for u in ("/a", "/b", "/c", "/d", "/e")])

    assert len(store.segments(200)) == 3
    assert [e.url for e in store.scan(200)] == ["/a", "/b", "/c", "/d", "/e"]


def test_record_larger_than_segment_limit_still_gets_written(store):
    writer = PartitionWriter(store, segment_max_bytes=8)
    writer.write_batch([entry(url="/first"), entry(url="/second")])

    assert store.segments(200) == [segment_path(200, 0), segment_path(200, 1)]
    assert [e.url for e in store.scan(200)] == ["/first", "/second"]


def test_write_batch_appends_once_per_partition(store, storage, monkeypatch):
    appends = []
    original = storage.append
    monkeypatch.setattr(storage, "append", lambda path, data: (appends.append(path), original(path, data)))

    refs = PartitionWriter(store).write_batch([entry(200), entry(404), entry(200), entry(200)])

    assert [ref.key for ref in refs].count(200) == 3
    assert sorted(appends) == [segment_path(200, 0), segment_path(404, 0)]


def test_store_unavailable_surfaces_with_partition_key(store, storage):
    storage.fail_appends = True
    with pytest.raises(StoreUnavailable) as info:
        PartitionWriter(store).write(entry(503))
    assert info.value.partition == 503
    assert info.value.code == "STORE_UNAVAILABLE"
    assert "partition=503" in str(info.value)
    assert "path=status_code=503/segment-00000.jsonl" in str(info.value)


def test_write_partition_rejects_entries_from_another_partition(store):
    with pytest.raises(ValueError):
        PartitionWriter(store).write_partition(200, [entry(404)])


def test_thresholds_must_be_positive(store):
    with pytest.raises(ValueError):
        PartitionWriter(store, segment_max_records=0)
