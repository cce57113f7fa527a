# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
DocVault Artifact Codec - Canonical serialization and compression.

Encoding:
1. Serialize the artifact to indented UTF-8 JSON (record-set order kept)
2. If the JSON is larger than the threshold (default 5 MiB), compress it
   with zstd and append ".zst" to the filename

Decoding detects the format from the content, not the filename: the raw
bytes are parsed as JSON first, then decompressed (zstd, or gzip for
artifacts written by the legacy exporter) and parsed again.
"""

import asyncio
import base64
import gzip
import json
import zlib
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Dict, List

import structlog
import zstandard as zstd

from docvault.config import DEFAULT_COMPRESSION_THRESHOLD_BYTES
from docvault.exceptions import InvalidArtifact
from docvault.snapshot import SUPPORTED_SCHEMA_VERSIONS, BackupArtifact

logger = structlog.get_logger()

# Thread pool for CPU-bound serialization and compression
_executor = ThreadPoolExecutor(max_workers=2)

DEFAULT_ZSTD_LEVEL = 10

# Above this size, work is moved off the event loop
OFFLOAD_THRESHOLD_BYTES = 1024 * 1024

JSON_CONTENT_TYPE = "application/json"
ZSTD_CONTENT_TYPE = "application/zstd"
COMPRESSED_SUFFIX = ".zst"


@dataclass
class EncodedArtifact:
    """Bytes ready for delivery plus the metadata describing them."""

    data: bytes
    filename: str
    content_type: str
    compressed: bool
    uncompressed_size: int

    @property
    def size_bytes(self) -> int:
        return len(self.data)


def json_default(value: Any) -> Any:
    """Render the few non-JSON scalars documents may carry."""
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (bytes, bytearray)):
        return base64.b64encode(bytes(value)).decode("ascii")
    if isinstance(value, (set, frozenset)):
        return list(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def artifact_filename(prefix: str, generated_at: datetime, compressed: bool) -> str:
    """
    Build the generation-timestamped artifact filename.

    Example: docvault-full-backup-2026-10-17T02-30-00-123456+00-00.json.zst
    """
    stamp = generated_at.isoformat().replace(":", "-").replace(".", "-")
    filename = f"{prefix}-full-backup-{stamp}.json"
    if compressed:
        filename += COMPRESSED_SUFFIX
    return filename


def serialize_artifact(artifact: BackupArtifact) -> bytes:
    """Canonical JSON bytes of an artifact."""
    try:
        text = json.dumps(
            artifact.to_payload(),
            indent=2,
            ensure_ascii=False,
            default=json_default,
        )
    except (TypeError, ValueError) as e:
        raise InvalidArtifact(f"Artifact cannot be serialized: {e}")
    return text.encode("utf-8")


def _compress_zstd_sync(data: bytes, level: int) -> bytes:
    cctx = zstd.ZstdCompressor(level=level)
    return cctx.compress(data)


def _decompress_zstd_sync(data: bytes) -> bytes:
    # decompressobj copes with frames that omit the content size
    dctx = zstd.ZstdDecompressor()
    return dctx.decompressobj().decompress(data)


def _encode_sync(
    artifact: BackupArtifact,
    compression_threshold_bytes: int,
    level: int,
    filename_prefix: str,
) -> EncodedArtifact:
    raw = serialize_artifact(artifact)
    compressed = len(raw) > compression_threshold_bytes

    if compressed:
        data = _compress_zstd_sync(raw, level)
        content_type = ZSTD_CONTENT_TYPE
    else:
        data = raw
        content_type = JSON_CONTENT_TYPE

    return EncodedArtifact(
        data=data,
        filename=artifact_filename(filename_prefix, artifact.generated_at, compressed),
        content_type=content_type,
        compressed=compressed,
        uncompressed_size=len(raw),
    )


async def encode_artifact(
    artifact: BackupArtifact,
    compression_threshold_bytes: int = DEFAULT_COMPRESSION_THRESHOLD_BYTES,
    level: int = DEFAULT_ZSTD_LEVEL,
    filename_prefix: str = "docvault",
) -> EncodedArtifact:
    """
    Encode an artifact for delivery.

    Runs in the thread pool for large artifacts to avoid blocking.

    Args:
        artifact: Snapshot to encode
        compression_threshold_bytes: Compress when the JSON is larger than this
        level: zstd compression level
        filename_prefix: Filename prefix

    Returns:
        EncodedArtifact with bytes, filename and content type

    Raises:
        InvalidArtifact: If a document holds a value JSON cannot express
    """
    if artifact.document_count > 1000:
        loop = asyncio.get_running_loop()
        encoded = await loop.run_in_executor(
            _executor,
            _encode_sync,
            artifact,
            compression_threshold_bytes,
            level,
            filename_prefix,
        )
    else:
        encoded = _encode_sync(
            artifact, compression_threshold_bytes, level, filename_prefix
        )

    logger.info(
        "artifact_encoded",
        filename=encoded.filename,
        size_bytes=encoded.size_bytes,
        compressed=encoded.compressed,
        **(
            get_compression_stats(encoded.uncompressed_size, encoded.size_bytes)
            if encoded.compressed
            else {}
        ),
    )

    return encoded


def _parse_json(data: bytes) -> Any:
    return json.loads(data.decode("utf-8"))


def _decompress_any(data: bytes) -> bytes:
    """Try each supported compression format in turn."""
    try:
        return _decompress_zstd_sync(data)
    except zstd.ZstdError:
        pass

    try:
        return gzip.decompress(data)
    except (OSError, EOFError, zlib.error) as e:
        raise InvalidArtifact(
            "Invalid backup file format (expected JSON, zstd- or gzip-compressed JSON)",
            details={"error": str(e)},
        )


def _parse_generated_at(value: Any) -> datetime:
    if not isinstance(value, str):
        raise InvalidArtifact("generatedAt must be an ISO-8601 string")
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        raise InvalidArtifact(f"Invalid generatedAt timestamp: {value!r}")


def parse_artifact_payload(payload: Any) -> BackupArtifact:
    """
    Validate a decoded JSON payload and turn it into a BackupArtifact.

    Raises:
        InvalidArtifact: If the structure is not a supported artifact
    """
    if not isinstance(payload, dict):
        raise InvalidArtifact("Invalid backup structure: top level must be an object")

    version = payload.get("schemaVersion")
    if isinstance(version, bool) or not isinstance(version, int):
        raise InvalidArtifact(
            "Invalid backup structure: schemaVersion must be an integer",
            details={"schemaVersion": version},
        )
    if version not in SUPPORTED_SCHEMA_VERSIONS:
        raise InvalidArtifact(
            f"Unsupported schemaVersion: {version}",
            details={"supported": sorted(SUPPORTED_SCHEMA_VERSIONS)},
        )

    # The legacy exporter called the mapping "collections"
    record_sets = payload.get("recordSets", payload.get("collections"))
    if not isinstance(record_sets, dict):
        raise InvalidArtifact("Invalid backup structure: recordSets must be an object")

    parsed: Dict[str, List[Dict[str, Any]]] = {}
    for name, documents in record_sets.items():
        if not isinstance(documents, list):
            raise InvalidArtifact(
                f"Invalid backup structure: record set {name!r} is not a list",
                details={"record_set": name, "type": type(documents).__name__},
            )
        for index, document in enumerate(documents):
            if not isinstance(document, dict):
                raise InvalidArtifact(
                    f"Invalid backup structure: {name}[{index}] is not an object",
                    details={"record_set": name, "index": index},
                )
        parsed[name] = documents

    environment = payload.get("environment", payload.get("nodeEnv"))

    return BackupArtifact(
        schema_version=version,
        generated_at=_parse_generated_at(payload.get("generatedAt")),
        record_sets=parsed,
        environment=environment if isinstance(environment, str) else None,
    )


def decode_artifact_sync(data: Any) -> BackupArtifact:
    """Synchronous decode; see decode_artifact()."""
    if not isinstance(data, (bytes, bytearray, memoryview)):
        raise InvalidArtifact(
            "Artifact must be raw bytes",
            details={"type": type(data).__name__},
        )
    data = bytes(data)

    try:
        payload = _parse_json(data)
        detected = "json"
    except (UnicodeDecodeError, json.JSONDecodeError):
        inflated = _decompress_any(data)
        try:
            payload = _parse_json(inflated)
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise InvalidArtifact(
                "Decompressed backup is not valid JSON",
                details={"error": str(e)},
            )
        detected = "compressed"

    artifact = parse_artifact_payload(payload)

    logger.debug(
        "artifact_decoded",
        format=detected,
        record_sets=len(artifact.record_sets),
        documents=artifact.document_count,
    )

    return artifact


async def decode_artifact(data: Any) -> BackupArtifact:
    """
    Decode and validate an artifact from raw bytes.

    Format detection is content-based, so renamed artifacts and artifacts
    that lost their compression suffix still decode. Decoding never
    partially succeeds.

    Args:
        data: Raw artifact bytes

    Returns:
        Validated BackupArtifact

    Raises:
        InvalidArtifact: If the bytes are not a valid artifact
    """
    if isinstance(data, (bytes, bytearray)) and len(data) > OFFLOAD_THRESHOLD_BYTES:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(_executor, decode_artifact_sync, data)
    return decode_artifact_sync(data)


def get_compression_stats(
    original_size: int,
    compressed_size: int,
) -> dict:
    """
    Calculate compression statistics.

    Args:
        original_size: Original data size in bytes
        compressed_size: Compressed data size in bytes

    Returns:
        Dict with compression statistics
    """
    if compressed_size == 0:
        return {
            "original_size": original_size,
            "compressed_size": compressed_size,
            "compression_ratio": 0,
        }

    return {
        "original_size": original_size,
        "compressed_size": compressed_size,
        "compression_ratio": round(original_size / compressed_size, 2),
    }
