"""Source resolvers: turn source references into local files."""

from .cloud import (
    AzureBlobResolver,
    AzureLocation,
    GCSLocation,
    GCSResolver,
    is_azure_url,
    is_gcs_url,
    parse_azure_url,
    parse_gcs_url,
)
from .compression import (
    Compression,
    CompressionResolver,
    detect_compression,
    get_inner_extension,
    get_uncompressed_path,
    is_compressed,
    supported_compressions,
)
from .remote import S3Location, S3Resolver, URLResolver, is_s3_url, is_url, parse_s3_url
from .stdin import StdinResolver, is_stdin_input

__all__ = [
    "AzureBlobResolver",
    "AzureLocation",
    "GCSLocation",
    "GCSResolver",
    "is_azure_url",
    "is_gcs_url",
    "parse_azure_url",
    "parse_gcs_url",
    "Compression",
    "CompressionResolver",
    "detect_compression",
    "get_inner_extension",
    "get_uncompressed_path",
    "is_compressed",
    "supported_compressions",
    "S3Location",
    "S3Resolver",
    "URLResolver",
    "is_s3_url",
    "is_url",
    "parse_s3_url",
    "StdinResolver",
    "is_stdin_input",
]
