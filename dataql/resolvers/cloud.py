"""Google Cloud Storage and Azure Blob Storage resolvers.

Same lifecycle as the S3 resolver: clients are built lazily from ambient
credentials and objects are downloaded into a per-run temporary directory.
"""

import logging
import os
import re
from dataclasses import dataclass
from typing import Any, List, Optional

from azure.core.exceptions import AzureError
from azure.storage.blob import BlobServiceClient
from google.api_core.exceptions import GoogleAPIError
from google.auth.exceptions import GoogleAuthError
from google.cloud import storage

from ..utils.error_handling import CredentialsError, DownloadError, InvalidSourceError
from .remote import _TempDirResolver, _local_name

logger = logging.getLogger(__name__)

GCS_URL_PATTERN = re.compile(r"^gs://([^/]+)/(.+)$")
AZURE_URL_PATTERN = re.compile(r"^(?:azure|az)://([^/]+)/(.+)$")
AZURE_BLOB_URL_PATTERN = re.compile(
    r"^https://([^.]+)\.blob\.core\.windows\.net/([^/]+)/(.+)$"
)


# === Google Cloud Storage ===


@dataclass(frozen=True)
class GCSLocation:
    """Parsed GCS object reference."""

    bucket: str
    object_name: str


def is_gcs_url(path: str) -> bool:
    """Check if a path is a ``gs://`` URL."""
    return path.startswith("gs://")


def parse_gcs_url(gcs_url: str) -> GCSLocation:
    """Split a ``gs://bucket/object`` URL.

    Raises:
        InvalidSourceError: If the URL has no bucket or object
    """
    match = GCS_URL_PATTERN.match(gcs_url)
    if not match:
        raise InvalidSourceError(
            f"invalid GCS URL format: {gcs_url} (expected gs://bucket/object)",
            source=gcs_url,
        )
    return GCSLocation(bucket=match.group(1), object_name=match.group(2))


class GCSResolver(_TempDirResolver):
    """Downloads ``gs://`` objects using Application Default Credentials."""

    TEMP_PREFIX = "dataql-gcs-"

    def __init__(self, client: Optional[Any] = None):
        super().__init__()
        self._client = client

    def resolve(self, paths: List[str]) -> List[str]:
        """Download every GCS object; pass other paths through unchanged.

        Raises:
            InvalidSourceError: If a GCS URL is malformed
            CredentialsError: If no GCS client can be constructed
            DownloadError: If the object cannot be fetched
        """
        return [self._download(p) if is_gcs_url(p) else p for p in paths]

    def _get_client(self) -> Any:
        if self._client is None:
            try:
                self._client = storage.Client()
            except GoogleAuthError as e:
                raise CredentialsError(f"failed to initialize GCS client: {e}") from e
        return self._client

    def _download(self, gcs_url: str) -> str:
        location = parse_gcs_url(gcs_url)
        client = self._get_client()
        local_path = self._target_path(_local_name(location.object_name))

        logger.debug("Downloading %s to %s", gcs_url, local_path)
        try:
            blob = client.bucket(location.bucket).blob(location.object_name)
            blob.download_to_filename(local_path)
        except GoogleAuthError as e:
            raise CredentialsError(f"failed to get GCS object: {e}", source=gcs_url) from e
        except GoogleAPIError as e:
            raise DownloadError(f"failed to get GCS object: {e}", source=gcs_url) from e
        except OSError as e:
            raise DownloadError(f"failed to write file content: {e}", source=gcs_url) from e

        self._temp_files.append(local_path)
        return local_path

    def cleanup(self) -> List[str]:
        warnings = super().cleanup()
        if self._client is not None and hasattr(self._client, "close"):
            self._client.close()
        return warnings


# === Azure Blob Storage ===


@dataclass(frozen=True)
class AzureLocation:
    """Parsed Azure blob reference; account is empty for ``azure://`` URLs."""

    container: str
    blob: str
    account: str = ""


def is_azure_url(path: str) -> bool:
    """Check if a path names an Azure blob."""
    return path.startswith(("azure://", "az://")) or ".blob.core.windows.net/" in path


def parse_azure_url(azure_url: str) -> AzureLocation:
    """Split ``azure://container/blob`` or a ``*.blob.core.windows.net`` URL.

    Raises:
        InvalidSourceError: If the URL does not name a container and blob
    """
    if azure_url.startswith(("azure://", "az://")):
        match = AZURE_URL_PATTERN.match(azure_url)
        if not match:
            raise InvalidSourceError(
                f"invalid Azure URL format: {azure_url} (expected azure://container/blob)",
                source=azure_url,
            )
        return AzureLocation(container=match.group(1), blob=match.group(2))

    match = AZURE_BLOB_URL_PATTERN.match(azure_url)
    if not match:
        raise InvalidSourceError(
            f"invalid Azure Blob URL format: {azure_url} "
            "(expected https://<account>.blob.core.windows.net/<container>/<blob>)",
            source=azure_url,
        )
    return AzureLocation(account=match.group(1), container=match.group(2), blob=match.group(3))


def build_azure_client(account: str = "") -> Any:
    """Blob service client from the environment.

    ``AZURE_STORAGE_CONNECTION_STRING`` wins; otherwise the account (from the
    URL or ``AZURE_STORAGE_ACCOUNT``) is paired with ``AZURE_STORAGE_KEY``.

    Raises:
        CredentialsError: If neither form of credentials is configured
    """
    conn_str = os.environ.get("AZURE_STORAGE_CONNECTION_STRING")
    try:
        if conn_str:
            return BlobServiceClient.from_connection_string(conn_str)

        account = account or os.environ.get("AZURE_STORAGE_ACCOUNT", "")
        key = os.environ.get("AZURE_STORAGE_KEY", "")
        if account and key:
            return BlobServiceClient(
                account_url=f"https://{account}.blob.core.windows.net/",
                credential={"account_name": account, "account_key": key},
            )
    except (AzureError, ValueError) as e:
        raise CredentialsError(f"failed to initialize Azure client: {e}") from e

    raise CredentialsError(
        "Azure credentials not found. Set AZURE_STORAGE_CONNECTION_STRING "
        "or AZURE_STORAGE_ACCOUNT and AZURE_STORAGE_KEY"
    )


class AzureBlobResolver(_TempDirResolver):
    """Downloads Azure blobs using credentials from the environment."""

    TEMP_PREFIX = "dataql-azure-"

    def __init__(self, client: Optional[Any] = None):
        super().__init__()
        self._client = client

    def resolve(self, paths: List[str]) -> List[str]:
        """Download every Azure blob; pass other paths through unchanged.

        Raises:
            InvalidSourceError: If an Azure URL is malformed
            CredentialsError: If no client can be constructed
            DownloadError: If the blob cannot be fetched
        """
        return [self._download(p) if is_azure_url(p) else p for p in paths]

    def _download(self, azure_url: str) -> str:
        location = parse_azure_url(azure_url)
        if self._client is None:
            self._client = build_azure_client(location.account)
        local_path = self._target_path(_local_name(location.blob))

        logger.debug("Downloading %s to %s", azure_url, local_path)
        try:
            blob_client = self._client.get_blob_client(
                container=location.container, blob=location.blob
            )
            with open(local_path, "wb") as f:
                blob_client.download_blob().readinto(f)
        except AzureError as e:
            raise DownloadError(f"failed to download Azure blob: {e}", source=azure_url) from e
        except OSError as e:
            raise DownloadError(f"failed to write file content: {e}", source=azure_url) from e

        self._temp_files.append(local_path)
        return local_path
