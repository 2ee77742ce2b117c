"""
Storage backends for Prachar Engine.

Provides:
- ObjectStore: abstract append-only binary store for generated media
- LocalObjectStore: saves under OUTPUT_DIR, served via the /output static mount
- S3ObjectStore: uploads to S3/R2 object storage with boto3
- MetadataStore: abstract project record store
- InMemoryMetadataStore / JsonFileMetadataStore

Usage:
    store = LocalObjectStore(config)
    store.put("users/u1/projects/p1/image/image_1_1_ab12cd34.png", data, "image/png")
    url = store.presigned_url(key, ttl_seconds=3600)
"""

import abc
import copy
import json
import os
import tempfile
import threading
import time
from pathlib import Path
from typing import Any, Dict, Optional
from urllib.parse import quote

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from .config import Config, get_config
from .errors import StorageError

# S3 error codes worth another attempt
RETRYABLE_S3_CODES = {
    "SlowDown",
    "ServiceUnavailable",
    "InternalError",
    "RequestTimeout",
    "RequestTimeTooSkewed",
    "503",
    "500",
}


class ObjectStore(abc.ABC):
    """Abstract base class for object stores. Keys are never overwritten."""

    @abc.abstractmethod
    def put(self, key: str, data: bytes, content_type: str) -> None:
        """
        Store bytes under a new key.

        Raises:
            StorageError: If the key already exists (terminal) or the write fails
        """
        pass

    @abc.abstractmethod
    def presigned_url(self, key: str, ttl_seconds: int) -> str:
        """Return a time-limited URL for reading `key`."""
        pass


class LocalObjectStore(ObjectStore):
    """
    Local filesystem object store.

    Saves objects to:
        {output_dir}/{key}

    URLs are constructed as:
        {public_base_url}/output/{key}?expires={unix_time}

    For local dev, FastAPI mounts ./output as /output static directory.
    The expiry is advisory; static files are not access-controlled.
    """

    def __init__(self, config: Optional[Config] = None, root: Optional[Path] = None):
        """
        Initialize local object store.

        Args:
            config: Configuration instance. Uses global config if not provided.
            root: Override the storage root (defaults to config.output_dir).
        """
        self.config = config or get_config()
        self.root = Path(root) if root is not None else self.config.output_dir
        self._lock = threading.Lock()

    def path_for(self, key: str) -> Path:
        path = (self.root / key).resolve()
        if self.root.resolve() not in path.parents:
            raise StorageError(f"Key escapes storage root: {key}", retryable=False)
        return path

    def put(self, key: str, data: bytes, content_type: str) -> None:
        path = self.path_for(key)
        with self._lock:
            if path.exists():
                raise StorageError(
                    f"Refusing to overwrite existing object: {key}", retryable=False
                )
            created = False
            try:
                path.parent.mkdir(parents=True, exist_ok=True)
                # Exclusive create so a racing writer cannot clobber the file
                with open(path, "xb") as f:
                    created = True
                    f.write(data)
            except FileExistsError:
                raise StorageError(
                    f"Refusing to overwrite existing object: {key}", retryable=False
                )
            except OSError as e:
                # A partial object would make every retry an overwrite
                if created:
                    path.unlink(missing_ok=True)
                raise StorageError(f"Failed to write {key}: {e}", retryable=True)

    def presigned_url(self, key: str, ttl_seconds: int) -> str:
        expires = int(time.time()) + ttl_seconds
        return f"{self.config.public_base_url}/output/{quote(key)}?expires={expires}"


class S3ObjectStore(ObjectStore):
    """
    S3/R2 object storage backend.

    Requires S3_BUCKET; S3_ENDPOINT, S3_REGION, S3_ACCESS_KEY and
    S3_SECRET_KEY are optional (boto3's default credential chain applies).
    """

    def __init__(self, config: Optional[Config] = None, client=None):
        self.config = config or get_config()
        if not self.config.s3_bucket:
            raise StorageError("S3_BUCKET is not configured", retryable=False)
        self.bucket = self.config.s3_bucket
        self._s3_client = client

    @property
    def s3(self):
        """Lazy S3 client initialization."""
        if self._s3_client is None:
            self._s3_client = boto3.client(
                "s3",
                endpoint_url=self.config.s3_endpoint,
                aws_access_key_id=self.config.s3_access_key,
                aws_secret_access_key=self.config.s3_secret_key,
                region_name=self.config.s3_region,
                config=BotoConfig(signature_version="s3v4"),
            )
        return self._s3_client

    def _exists(self, key: str) -> bool:
        try:
            self.s3.head_object(Bucket=self.bucket, Key=key)
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in ("404", "NoSuchKey", "NotFound"):
                return False
            raise
        return True

    def put(self, key: str, data: bytes, content_type: str) -> None:
        try:
            if self._exists(key):
                raise StorageError(
                    f"Refusing to overwrite existing object: {key}", retryable=False
                )
            self.s3.put_object(
                Bucket=self.bucket, Key=key, Body=data, ContentType=content_type
            )
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code", "")
            raise StorageError(
                f"S3 upload failed for {key}: {code}",
                retryable=code in RETRYABLE_S3_CODES,
                service_code=code,
            )
        except BotoCoreError as e:
            # Connection and timeout errors from the transport layer
            raise StorageError(f"S3 upload failed for {key}: {e}", retryable=True)

    def presigned_url(self, key: str, ttl_seconds: int) -> str:
        return self.s3.generate_presigned_url(
            "get_object",
            Params={"Bucket": self.bucket, "Key": key},
            ExpiresIn=ttl_seconds,
        )


def create_object_store(config: Optional[Config] = None) -> ObjectStore:
    """Build the object store selected by STORAGE_BACKEND."""
    config = config or get_config()
    if config.storage_backend == "s3":
        return S3ObjectStore(config)
    return LocalObjectStore(config)


class MetadataStore(abc.ABC):
    """
    Abstract project record store.

    Both writes are idempotent under the same project id: repeating a put
    replaces the record, repeating an update re-applies the same fields.
    """

    @abc.abstractmethod
    def put(self, record: Dict[str, Any]) -> None:
        pass

    @abc.abstractmethod
    def update(self, project_id: str, fields: Dict[str, Any]) -> None:
        """
        Merge fields into an existing record.

        Raises:
            StorageError: If the record does not exist or the write fails
        """
        pass

    @abc.abstractmethod
    def get(self, project_id: str) -> Optional[Dict[str, Any]]:
        pass


class InMemoryMetadataStore(MetadataStore):
    """Process-local store, used by tests and the local CLI."""

    def __init__(self):
        self._records: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.Lock()

    def put(self, record: Dict[str, Any]) -> None:
        with self._lock:
            self._records[record["projectId"]] = copy.deepcopy(record)

    def update(self, project_id: str, fields: Dict[str, Any]) -> None:
        with self._lock:
            if project_id not in self._records:
                raise StorageError(f"Unknown project: {project_id}", retryable=False)
            self._records[project_id].update(copy.deepcopy(fields))

    def get(self, project_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            record = self._records.get(project_id)
            return copy.deepcopy(record) if record is not None else None


class JsonFileMetadataStore(MetadataStore):
    """
    One JSON document per project.

    Saves records to:
        {output_dir}/projects/{project_id}.json
    """

    def __init__(self, config: Optional[Config] = None, root: Optional[Path] = None):
        self.config = config or get_config()
        self.root = Path(root) if root is not None else self.config.output_dir / "projects"
        self._lock = threading.Lock()

    def _path(self, project_id: str) -> Path:
        if "/" in project_id or project_id.startswith("."):
            raise StorageError(f"Invalid project id: {project_id}", retryable=False)
        return self.root / f"{project_id}.json"

    def _write(self, path: Path, record: Dict[str, Any]) -> None:
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            # Write to a temp file and rename so readers never see half a record
            fd, tmp_name = tempfile.mkstemp(dir=self.root, suffix=".tmp")
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(record, f, indent=2, ensure_ascii=False)
            os.replace(tmp_name, path)
        except OSError as e:
            raise StorageError(f"Failed to write {path.name}: {e}", retryable=True)

    def put(self, record: Dict[str, Any]) -> None:
        with self._lock:
            self._write(self._path(record["projectId"]), record)

    def update(self, project_id: str, fields: Dict[str, Any]) -> None:
        path = self._path(project_id)
        with self._lock:
            record = self._read(path)
            if record is None:
                raise StorageError(f"Unknown project: {project_id}", retryable=False)
            record.update(fields)
            self._write(path, record)

    def get(self, project_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            return self._read(self._path(project_id))

    def _read(self, path: Path) -> Optional[Dict[str, Any]]:
        if not path.is_file():
            return None
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            raise StorageError(f"Failed to read {path.name}: {e}", retryable=True)
