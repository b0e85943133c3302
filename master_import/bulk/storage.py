import os
import pathlib
from typing import Optional
from urllib.parse import unquote, urlparse

from google.cloud import storage


class StorageError(Exception):
    pass


class StorageClient:
    """Keeps raw uploads in a GCS bucket, or under a local directory in development."""

    def __init__(self, bucket_name: Optional[str] = None, base_dir: Optional[str] = None) -> None:
        self.bucket_name = bucket_name or os.getenv("GCS_BUCKET")
        self.use_local = os.getenv("LOCAL_STORAGE", "0") == "1" or not self.bucket_name
        self.base_dir = pathlib.Path(base_dir or os.getenv("LOCAL_STORAGE_DIR", "storage")).resolve()
        if self.use_local:
            self.base_dir.mkdir(parents=True, exist_ok=True)
        self._client = storage.Client() if self.bucket_name and not self.use_local else None

    def _ensure_bucket(self):
        if not self.bucket_name or not self._client:
            raise StorageError("GCS_BUCKET is not configured.")
        return self._client.bucket(self.bucket_name)

    def upload_bytes(self, content: bytes, dest_path: str, content_type: str) -> str:
        if self.use_local:
            full_path = self.base_dir / dest_path
            full_path.parent.mkdir(parents=True, exist_ok=True)
            full_path.write_bytes(content)
            return full_path.as_uri()
        bucket = self._ensure_bucket()
        blob = bucket.blob(dest_path)
        blob.upload_from_string(content, content_type=content_type)
        return f"gs://{self.bucket_name}/{dest_path}"

    def download_bytes(self, file_url: str) -> bytes:
        if file_url.startswith("file://"):
            path = pathlib.Path(unquote(urlparse(file_url).path))
            if not path.exists():
                raise StorageError(f"File not found: {file_url}")
            return path.read_bytes()
        if file_url.startswith("gs://"):
            _, path = file_url.split("gs://", 1)
            bucket_name, blob_path = path.split("/", 1)
            client = self._client or storage.Client()
            blob = client.bucket(bucket_name).blob(blob_path)
            return blob.download_as_bytes()
        raise StorageError("Unsupported file URL.")
