import io

import boto3
import pytest
from botocore.response import StreamingBody
from botocore.stub import Stubber

from logpart.errors import StoreUnavailable
from logpart.storage import LocalStorage, S3Storage, open_destination, open_storage, parse_s3_url


def body(data: bytes) -> StreamingBody:
    return StreamingBody(io.BytesIO(data), len(data))


@pytest.fixture
def s3():
    client = boto3.client(
        "s3",
        region_name="us-east-1",
        aws_access_key_id="testing",
        aws_secret_access_key="testing",
    )
    with Stubber(client) as stubber:
        yield client, stubber
        stubber.assert_no_pending_responses()


# -----------------------------
# LOCAL
# -----------------------------

def test_local_create_is_create_if_absent(tmp_path):
    storage = LocalStorage(tmp_path)
    assert storage.create("p/_PARTITION") is True
    assert storage.create("p/_PARTITION") is False


def test_local_append_list_and_read(tmp_path):
    storage = LocalStorage(tmp_path)
    storage.append("p/segment-00001.jsonl", b"b\n")
    storage.append("p/segment-00000.jsonl", b"a\n")
    storage.append("p/segment-00000.jsonl", b"c\n")

    assert storage.list("p/") == ["p/segment-00000.jsonl", "p/segment-00001.jsonl"]
    assert storage.list("missing/") == []
    assert b"".join(storage.read_sequential("p/segment-00000.jsonl")) == b"a\nc\n"


def test_local_put_replaces_content(tmp_path):
    storage = LocalStorage(tmp_path)
    storage.put("out.csv", b"old,1\nolder,2\n")
    storage.put("out.csv", b"new,3\n")
    assert (tmp_path / "out.csv").read_bytes() == b"new,3\n"
    assert storage.list("") == ["out.csv"]


def test_local_read_of_missing_object_is_store_unavailable(tmp_path):
    with pytest.raises(StoreUnavailable) as info:
        list(LocalStorage(tmp_path).read_sequential("nope.jsonl"))
    assert info.value.path == "nope.jsonl"


def test_local_root_that_is_a_file_is_store_unavailable(tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("x")
    with pytest.raises(StoreUnavailable):
        LocalStorage(blocker / "store")


# -----------------------------
# S3
# -----------------------------

def test_parse_s3_url():
    assert parse_s3_url("s3://logs/access/2025/") == ("logs", "access/2025")
    with pytest.raises(ValueError):
        parse_s3_url("/tmp/logs")


def test_s3_create_when_missing(s3):
    client, stubber = s3
    key = {"Bucket": "logs", "Key": "data/status_code=200/_PARTITION"}
    stubber.add_client_error("head_object", service_error_code="404", http_status_code=404, expected_params=key)
    stubber.add_response("put_object", {}, {**key, "Body": b""})

    assert S3Storage("logs", "data", client=client).create("status_code=200/_PARTITION") is True


def test_s3_create_when_present(s3):
    client, stubber = s3
    stubber.add_response("head_object", {}, {"Bucket": "logs", "Key": "data/m"})
    assert S3Storage("logs", "data", client=client).create("m") is False


def test_s3_append_rewrites_object_with_new_records(s3):
    client, stubber = s3
    key = {"Bucket": "logs", "Key": "data/seg.jsonl"}
    stubber.add_response("get_object", {"Body": body(b"a\n")}, key)
    stubber.add_response("put_object", {}, {**key, "Body": b"a\nb\n"})

    S3Storage("logs", "data", client=client).append("seg.jsonl", b"b\n")


def test_s3_append_to_new_object(s3):
    client, stubber = s3
    key = {"Bucket": "logs", "Key": "seg.jsonl"}
    stubber.add_client_error("get_object", service_error_code="NoSuchKey", http_status_code=404, expected_params=key)
    stubber.add_response("put_object", {}, {**key, "Body": b"b\n"})

    S3Storage("logs", client=client).append("seg.jsonl", b"b\n")


def test_s3_list_strips_prefix_and_skips_folders(s3):
    client, stubber = s3
    stubber.add_response(
        "list_objects_v2",
        {
            "IsTruncated": False,
            "Contents": [
                {"Key": "data/status_code=404/"},
                {"Key": "data/status_code=404/segment-00001.jsonl"},
                {"Key": "data/status_code=404/segment-00000.jsonl"},
            ],
        },
        {"Bucket": "logs", "Prefix": "data/status_code=404/"},
    )

    assert S3Storage("logs", "data", client=client).list("status_code=404/") == [
        "status_code=404/segment-00000.jsonl",
        "status_code=404/segment-00001.jsonl",
    ]


def test_s3_read_sequential(s3):
    client, stubber = s3
    stubber.add_response("get_object", {"Body": body(b"x\ny\n")}, {"Bucket": "logs", "Key": "data/seg.jsonl"})
    assert b"".join(S3Storage("logs", "data", client=client).read_sequential("seg.jsonl")) == b"x\ny\n"


def test_s3_errors_become_store_unavailable(s3):
    client, stubber = s3
    stubber.add_client_error("put_object", service_error_code="SlowDown", http_status_code=503)
    with pytest.raises(StoreUnavailable) as info:
        S3Storage("logs", "data", client=client).put("out.csv", b"a,1\n")
    assert info.value.path == "out.csv"


def test_open_storage_and_destination(tmp_path):
    assert isinstance(open_storage(str(tmp_path / "store")), LocalStorage)
    storage, path = open_destination(str(tmp_path / "out" / "top.csv"))
    assert isinstance(storage, LocalStorage)
    assert path == "top.csv"
    with pytest.raises(ValueError):
        open_destination("s3://bucket-only")
