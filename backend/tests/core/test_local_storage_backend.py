"""Tests for the local filesystem storage backend and backend selection."""

import pytest

from video_ingest.core.storage import LocalStorage, S3Storage, Storage, StorageConfig


@pytest.fixture
def storage(tmp_path) -> Storage:
    return Storage(StorageConfig(
        backend="local",
        bucket="media",
        local_path=str(tmp_path / "objects"),
        public_endpoint="http://localhost:9000",
    ))


@pytest.fixture
def source_file(tmp_path):
    path = tmp_path / "source.ts"
    path.write_bytes(b"\x47" * 376)
    return path


class TestLocalStorage:

    def test_upload_copies_under_bucket(self, storage, source_file, tmp_path):
        result = storage.upload(str(source_file), "videos/abc/hls/segment_000.ts", "video/MP2T")

        assert result.success
        assert result.file_size == 376
        assert result.url == "http://localhost:9000/media/videos/abc/hls/segment_000.ts"
        stored = tmp_path / "objects" / "media" / "videos" / "abc" / "hls" / "segment_000.ts"
        assert stored.read_bytes() == source_file.read_bytes()

    def test_upload_missing_source_fails_without_raising(self, storage, tmp_path):
        result = storage.upload(str(tmp_path / "missing.mp4"), "videos/abc/original.mp4")

        assert not result.success
        assert result.url == ""
        assert result.error_message

    def test_exists_and_delete(self, storage, source_file):
        storage.upload(str(source_file), "videos/abc/original.mp4")

        assert storage.exists("videos/abc/original.mp4")
        assert storage.delete("videos/abc/original.mp4") is True
        assert not storage.exists("videos/abc/original.mp4")
        assert storage.delete("videos/abc/original.mp4") is False

    def test_list_files_by_prefix(self, storage, source_file):
        for key in ("videos/a/original.mp4", "videos/a/thumbnail.jpg", "videos/b/original.mp4"):
            storage.upload(str(source_file), key)

        assert storage.list_files("videos/a/") == ["videos/a/original.mp4", "videos/a/thumbnail.jpg"]
        assert len(storage.list_files()) == 3


class TestBackendSelection:

    def test_local(self, tmp_path):
        storage = Storage(StorageConfig(backend="local", local_path=str(tmp_path)))

        assert isinstance(storage._backend, LocalStorage)

    @pytest.mark.parametrize("backend", ["s3", "minio", "AWS"])
    def test_s3_compatible(self, backend):
        storage = Storage(StorageConfig(backend=backend, bucket="media"))

        assert isinstance(storage._backend, S3Storage)

    def test_unknown_backend(self):
        with pytest.raises(ValueError):
            Storage(StorageConfig(backend="ftp"))
