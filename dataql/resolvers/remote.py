"""Remote source resolvers.

Downloads ``http(s)://`` URLs and ``s3://bucket/key`` objects into a
per-run temporary directory.
"""

import logging
import os
import re
import shutil
import tempfile
import threading
from dataclasses import dataclass
from typing import Any, List, Optional
from urllib.parse import urlparse

import boto3
import requests
from botocore.exceptions import BotoCoreError, ClientError

from ..utils.error_handling import (
    CredentialsError,
    DownloadError,
    InvalidSourceError,
)

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 300
DEFAULT_CHUNK_SIZE = 64 * 1024
FALLBACK_FILENAME = "downloaded_data"

S3_URL_PATTERN = re.compile(r"^s3://([^/]+)/(.+)$")


def is_url(path: str) -> bool:
    """Check if a path is an HTTP or HTTPS URL."""
    path = path.strip()
    return path.startswith("http://") or path.startswith("https://")


def is_s3_url(path: str) -> bool:
    """Check if a path is an S3 URL."""
    return path.startswith("s3://")


@dataclass(frozen=True)
class S3Location:
    """Parsed S3 object reference."""

    bucket: str
    key: str


def parse_s3_url(s3_url: str) -> S3Location:
    """Split an ``s3://bucket/key`` URL.

    Raises:
        InvalidSourceError: If the URL has no bucket or key
    """
    match = S3_URL_PATTERN.match(s3_url)
    if not match:
        raise InvalidSourceError(
            f"invalid S3 URL format: {s3_url} (expected s3://bucket/key)",
            source=s3_url,
        )
    return S3Location(bucket=match.group(1), key=match.group(2))


def _local_name(path_component: str) -> str:
    name = os.path.basename(path_component.rstrip("/"))
    if name in ("", ".", "/"):
        return FALLBACK_FILENAME
    return name


class _TempDirResolver:
    """Shared temp-directory lifecycle for downloading resolvers."""

    TEMP_PREFIX = "dataql_"

    def __init__(self):
        self._temp_dir: Optional[str] = None
        self._temp_files: List[str] = []
        self._lock = threading.Lock()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.cleanup()

    @property
    def temp_dir(self) -> Optional[str]:
        """Per-run download directory, or None before the first download."""
        return self._temp_dir

    def temp_files(self) -> List[str]:
        """Files downloaded so far."""
        return list(self._temp_files)

    def _ensure_temp_dir(self) -> str:
        with self._lock:
            if self._temp_dir is None:
                self._temp_dir = tempfile.mkdtemp(prefix=self.TEMP_PREFIX)
            return self._temp_dir

    def _target_path(self, name: str) -> str:
        """Pick a local path in the temp dir that is not already taken."""
        temp_dir = self._ensure_temp_dir()
        path = os.path.join(temp_dir, name)
        if path not in self._temp_files and not os.path.exists(path):
            return path
        # Two sources with the same basename get their own subdirectory
        return os.path.join(tempfile.mkdtemp(dir=temp_dir), name)

    def cleanup(self) -> List[str]:
        """Remove the whole temp directory.

        A failed removal keeps the directory so a later call can retry.

        Returns:
            Warning messages, empty when removal succeeded
        """
        warnings = []
        with self._lock:
            if self._temp_dir is not None:
                try:
                    shutil.rmtree(self._temp_dir)
                except FileNotFoundError:
                    pass
                except OSError as e:
                    message = f"failed to remove {self._temp_dir}: {e}"
                    logger.warning(message)
                    warnings.append(message)
                    return warnings
                self._temp_dir = None
            self._temp_files = []
        return warnings


class URLResolver(_TempDirResolver):
    """Downloads HTTP(S) sources to local temporary files."""

    TEMP_PREFIX = "dataql_downloads_"

    def __init__(
        self,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        session: Optional[requests.Session] = None,
    ):
        """Initialize URL resolver.

        Args:
            timeout: Per-request timeout in seconds
            chunk_size: Streaming chunk size in bytes
            session: Optional requests session (default: module-level requests)
        """
        super().__init__()
        self.timeout = timeout
        self.chunk_size = chunk_size
        self._http = session or requests

    def resolve(self, paths: List[str]) -> List[str]:
        """Download every URL; pass other paths through unchanged.

        Raises:
            DownloadError: On transport error or non-2xx status
        """
        return [self._download(p) if is_url(p) else p for p in paths]

    def _download(self, url: str) -> str:
        url = url.strip()
        parsed = urlparse(url)
        local_path = self._target_path(_local_name(parsed.path))

        logger.debug("Downloading %s to %s", url, local_path)
        try:
            with self._http.get(url, stream=True, timeout=self.timeout) as response:
                if not 200 <= response.status_code < 300:
                    raise DownloadError(
                        f"HTTP error: status {response.status_code}",
                        source=url,
                        status_code=response.status_code,
                    )
                with open(local_path, "wb") as f:
                    for chunk in response.iter_content(chunk_size=self.chunk_size):
                        if chunk:
                            f.write(chunk)
        except requests.RequestException as e:
            raise DownloadError(f"HTTP request failed: {e}", source=url) from e
        except OSError as e:
            raise DownloadError(f"failed to write downloaded file: {e}", source=url) from e

        self._temp_files.append(local_path)
        return local_path


class S3Resolver(_TempDirResolver):
    """Downloads ``s3://`` objects using ambient AWS credentials."""

    TEMP_PREFIX = "dataql-s3-"

    def __init__(self, client: Optional[Any] = None, region: Optional[str] = None):
        """Initialize S3 resolver.

        Args:
            client: Pre-built boto3 S3 client (built lazily when None)
            region: Region override for the lazily built client
        """
        super().__init__()
        self._client = client
        self._region = region

    def resolve(self, paths: List[str]) -> List[str]:
        """Download every S3 object; pass other paths through unchanged.

        Raises:
            InvalidSourceError: If an S3 URL is malformed
            CredentialsError: If no S3 client can be constructed
            DownloadError: If the object cannot be fetched
        """
        return [self._download(p) if is_s3_url(p) else p for p in paths]

    def _get_client(self) -> Any:
        if self._client is None:
            endpoint = os.environ.get("AWS_ENDPOINT_URL_S3") or os.environ.get(
                "AWS_ENDPOINT_URL"
            )
            try:
                self._client = boto3.client(
                    "s3",
                    region_name=self._region,
                    endpoint_url=endpoint or None,
                )
            except BotoCoreError as e:
                raise CredentialsError(f"failed to initialize S3 client: {e}") from e
        return self._client

    def _download(self, s3_url: str) -> str:
        location = parse_s3_url(s3_url)
        client = self._get_client()
        local_path = self._target_path(_local_name(location.key))

        logger.debug("Downloading %s to %s", s3_url, local_path)
        try:
            response = client.get_object(Bucket=location.bucket, Key=location.key)
            body = response["Body"]
            with open(local_path, "wb") as f:
                for chunk in body.iter_chunks(chunk_size=DEFAULT_CHUNK_SIZE):
                    f.write(chunk)
        except ClientError as e:
            raise DownloadError(f"failed to get S3 object: {e}", source=s3_url) from e
        except BotoCoreError as e:
            raise CredentialsError(f"failed to get S3 object: {e}", source=s3_url) from e
        except OSError as e:
            raise DownloadError(f"failed to write file content: {e}", source=s3_url) from e

        self._temp_files.append(local_path)
        return local_path
