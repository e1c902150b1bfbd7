"""
Artifact storage backends.

Each store exposes `upload_artifact(key, data, content_type) -> public URL`.
Uploads overwrite: the same key always maps to the same URL.
"""

import logging
import os
import tempfile
from pathlib import Path

import boto3
import requests
from botocore.config import Config as BotoConfig

from tubescribe.core.constants import DEFAULT_STORAGE_ROOT

logger = logging.getLogger(__name__)


class ArtifactStore:
    def upload_artifact(self, key: str, data: bytes, content_type: str) -> str:
        raise NotImplementedError


def _safe_key(key: str) -> str:
    parts = [p for p in key.replace('\\', '/').split('/') if p]
    if not parts or any(p in ('.', '..') for p in parts):
        raise ValueError(f"Unsafe artifact key: {key!r}")
    return '/'.join(parts)


class LocalArtifactStore(ArtifactStore):
    """Writes artifacts under a root directory (atomic replace)."""

    def __init__(self, root: Path | None = None, public_base_url: str | None = None):
        self.root = Path(root) if root else DEFAULT_STORAGE_ROOT
        self.public_base_url = public_base_url.rstrip('/') if public_base_url else None

    def path_for(self, key: str) -> Path:
        return self.root / _safe_key(key)

    def upload_artifact(self, key: str, data: bytes, content_type: str) -> str:
        target = self.path_for(key)
        target.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=target.parent, prefix='.upload-')
        try:
            with os.fdopen(fd, 'wb') as f:
                f.write(data)
            os.replace(tmp, target)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise

        logger.debug("Stored %s (%d bytes, %s)", target, len(data), content_type)
        if self.public_base_url:
            return f"{self.public_base_url}/{_safe_key(key)}"
        return target.resolve().as_uri()


class HttpArtifactStore(ArtifactStore):
    """PUTs artifacts to an HTTP object endpoint (e.g. a WebDAV or gateway bucket)."""

    def __init__(self, base_url: str, token: str | None = None,
                 timeout: float = 30, session: requests.Session | None = None):
        self.base_url = base_url.rstrip('/')
        self.token = token
        self.timeout = timeout
        self.session = session or requests.Session()

    def upload_artifact(self, key: str, data: bytes, content_type: str) -> str:
        url = f"{self.base_url}/{_safe_key(key)}"
        headers = {"Content-Type": content_type}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        resp = self.session.put(url, data=data, headers=headers, timeout=self.timeout)
        resp.raise_for_status()
        return url


class S3ArtifactStore(ArtifactStore):
    """S3-compatible object storage (AWS, DigitalOcean Spaces, MinIO)."""

    def __init__(self, bucket: str, endpoint_url: str | None = None,
                 region: str | None = None, access_key: str | None = None,
                 secret_key: str | None = None, public_base_url: str | None = None,
                 client=None):
        self.bucket = bucket
        self.endpoint_url = endpoint_url
        self.public_base_url = public_base_url.rstrip('/') if public_base_url else None
        if client is None:
            session = boto3.session.Session(
                aws_access_key_id=access_key,
                aws_secret_access_key=secret_key,
                region_name=region,
            )
            client = session.client(
                "s3",
                endpoint_url=endpoint_url,
                config=BotoConfig(
                    s3={"addressing_style": "path"},
                    signature_version="s3v4",
                ),
            )
        self.client = client

    def object_url(self, key: str) -> str:
        base = self.public_base_url or (self.endpoint_url or "https://s3.amazonaws.com").rstrip('/')
        return f"{base}/{self.bucket}/{key}"

    def upload_artifact(self, key: str, data: bytes, content_type: str) -> str:
        key = _safe_key(key)
        self.client.put_object(
            Bucket=self.bucket,
            Key=key,
            Body=data,
            ContentType=content_type,
            ACL="public-read",
        )
        return self.object_url(key)


def build_artifact_store(config) -> ArtifactStore:
    """Select a backend from the `storage_backend` config key."""
    backend = config.get('storage_backend', 'local')
    if backend == 'http':
        return HttpArtifactStore(config.get('storage_http_base_url'),
                                 token=config.get('storage_http_token'))
    if backend == 's3':
        return S3ArtifactStore(
            bucket=config.get('s3_bucket'),
            endpoint_url=config.get('s3_endpoint_url'),
            region=config.get('s3_region'),
            access_key=config.get('s3_access_key'),
            secret_key=config.get('s3_secret_key'),
            public_base_url=config.get('storage_public_base_url'),
        )
    return LocalArtifactStore(config.get('storage_root'),
                              public_base_url=config.get('storage_public_base_url'))
