import io

import pytest
from botocore.exceptions import ClientError

import app.s3 as s3
from app.config import get_settings, override
from app.local_s3 import LocalS3Client, LocalS3Error, ObjectNotFound


class DummyBoto:
    """Just enough of the boto3 S3 client for BotoS3Client."""

    def __init__(self):
        self.objects: dict[str, bytes] = {}
        self.deleted: list[str] = []

    def _missing(self, op):
        return ClientError({"Error": {"Code": "404", "Message": "Not Found"}}, op)

    def upload_fileobj(self, fileobj, Bucket, Key):
        self.objects[Key] = fileobj.read()

    def head_object(self, Bucket, Key):
        if Key not in self.objects:
            raise self._missing("HeadObject")
        return {"ContentLength": len(self.objects[Key])}

    def get_object(self, Bucket, Key):
        if Key not in self.objects:
            raise ClientError({"Error": {"Code": "NoSuchKey", "Message": "missing"}}, "GetObject")
        return {"Body": io.BytesIO(self.objects[Key])}

    def copy_object(self, Bucket, Key, CopySource):
        if CopySource["Key"] not in self.objects:
            raise self._missing("CopyObject")
        self.objects[Key] = self.objects[CopySource["Key"]]

    def delete_object(self, Bucket, Key):
        self.deleted.append(Key)
        self.objects.pop(Key, None)

    def head_bucket(self, Bucket):
        return {}


@pytest.fixture
def boto_storage(monkeypatch):
    dummy = DummyBoto()
    monkeypatch.setattr(s3.boto3, "client", lambda *args, **kwargs: dummy)
    with override(storage_backend="s3", s3_bucket="cloudbox-test"):
        client = s3.build_storage(get_settings())
    return client, dummy


def test_local_roundtrip(tmp_path):
    store = LocalS3Client(tmp_path / "root")
    assert store.put_object("users/1/a.txt", io.BytesIO(b"abc")) == 3
    assert store.object_exists("users/1/a.txt")
    assert store.object_size("users/1/a.txt") == 3
    store.copy_object("users/1/a.txt", "users/1/b.txt")
    with store.open_object("users/1/b.txt") as fh:
        assert fh.read() == b"abc"
    store.delete_object("users/1/a.txt")
    store.delete_object("users/1/a.txt")
    assert not store.object_exists("users/1/a.txt")
    store.ping()


def test_local_missing_and_traversal(tmp_path):
    store = LocalS3Client(tmp_path / "root")
    with pytest.raises(ObjectNotFound):
        store.open_object("nope")
    with pytest.raises(ObjectNotFound):
        store.copy_object("nope", "dest")
    with pytest.raises(LocalS3Error):
        store.put_object("../escape.txt", io.BytesIO(b"x"))
    assert store.object_exists("../../etc/passwd") is False


def test_iter_object_fails_before_streaming(tmp_path):
    store = LocalS3Client(tmp_path)
    with pytest.raises(ObjectNotFound):
        s3.iter_object(store, "missing.bin")
    store.put_object("big.bin", io.BytesIO(b"x" * 10))
    assert list(s3.iter_object(store, "big.bin", chunk_size=4)) == [b"xxxx", b"xxxx", b"xx"]


def test_object_stream_closes_unread_handle(tmp_path):
    store = LocalS3Client(tmp_path)
    store.put_object("a.bin", io.BytesIO(b"abc"))
    fh = store.open_object("a.bin")
    stream = s3.ObjectStream(fh)
    stream.close()
    assert fh.closed
    assert list(stream) == []


def test_delete_object_quietly(tmp_path, monkeypatch):
    store = LocalS3Client(tmp_path)
    assert s3.delete_object_quietly(store, None) is True
    assert s3.delete_object_quietly(store, "never-there") is True

    def boom(key):
        raise OSError("disk gone")

    monkeypatch.setattr(store, "delete_object", boom)
    assert s3.delete_object_quietly(store, "x") is False


def test_build_storage_selects_backend(tmp_path):
    with override(storage_backend="local", storage_base_path=str(tmp_path / "data")):
        assert isinstance(s3.build_storage(get_settings()), LocalS3Client)
    with override(storage_backend="s3", s3_bucket=None):
        with pytest.raises(ValueError):
            s3.build_storage(get_settings())
    with override(storage_backend="ftp"):
        with pytest.raises(ValueError):
            s3.build_storage(get_settings())


def test_boto_client_operations(boto_storage):
    client, dummy = boto_storage
    assert client.bucket == "cloudbox-test"
    assert client.put_object("k1", io.BytesIO(b"hello")) == 5
    assert client.object_exists("k1")
    assert not client.object_exists("k2")
    client.copy_object("k1", "k2")
    assert client.open_object("k2").read() == b"hello"
    client.delete_object("k1")
    assert dummy.deleted == ["k1"]
    client.ping()


def test_boto_client_maps_missing_keys(boto_storage):
    client, _ = boto_storage
    with pytest.raises(ObjectNotFound):
        client.open_object("missing")
    with pytest.raises(ObjectNotFound):
        client.object_size("missing")
    with pytest.raises(ObjectNotFound):
        client.copy_object("missing", "dest")
