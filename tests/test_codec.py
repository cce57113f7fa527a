# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Artifact Codec Tests.

Encoding must be canonical and compression must be invisible to restore.
Decoding must reject anything that is not a supported artifact without
partially succeeding.
"""

import base64
import gzip
import json
from datetime import datetime, UTC

import pytest

from docvault.codec import (
    COMPRESSED_SUFFIX,
    JSON_CONTENT_TYPE,
    ZSTD_CONTENT_TYPE,
    artifact_filename,
    decode_artifact,
    encode_artifact,
)
from docvault.exceptions import InvalidArtifact
from docvault.snapshot import BackupArtifact


def make_artifact(**record_sets) -> BackupArtifact:
    return BackupArtifact(
        schema_version=1,
        generated_at=datetime(2026, 3, 1, 2, 30, 0, 123456, tzinfo=UTC),
        record_sets=record_sets,
        environment="test",
    )


# ============================================================================
# Encoding
# ============================================================================

@pytest.mark.asyncio
async def test_small_artifact_is_plain_json():
    artifact = make_artifact(users=[{"_id": "u1", "name": "Ada"}], orders=[])

    encoded = await encode_artifact(artifact, compression_threshold_bytes=1024 * 1024)

    assert encoded.compressed is False
    assert encoded.content_type == JSON_CONTENT_TYPE
    assert encoded.filename.endswith(".json")

    payload = json.loads(encoded.data.decode("utf-8"))
    assert payload["schemaVersion"] == 1
    assert payload["environment"] == "test"
    assert list(payload["recordSets"]) == ["users", "orders"]
    # Two-space indentation
    assert b'\n  "schemaVersion": 1' in encoded.data


@pytest.mark.asyncio
async def test_compression_is_transparent():
    """A compressed artifact decodes to the same tree as an uncompressed one."""
    documents = [{"_id": f"d{i}", "body": "x" * 100} for i in range(50)]
    artifact = make_artifact(notes=documents)

    plain = await encode_artifact(artifact, compression_threshold_bytes=10**9)
    packed = await encode_artifact(artifact, compression_threshold_bytes=0)

    assert packed.compressed is True
    assert packed.content_type == ZSTD_CONTENT_TYPE
    assert packed.filename.endswith(".json" + COMPRESSED_SUFFIX)
    assert packed.size_bytes < plain.size_bytes

    assert (await decode_artifact(plain.data)).record_sets == (
        await decode_artifact(packed.data)
    ).record_sets


@pytest.mark.asyncio
async def test_threshold_is_strictly_greater_than():
    artifact = make_artifact(users=[{"_id": "u1"}])
    raw_size = (await encode_artifact(artifact, compression_threshold_bytes=10**9)).size_bytes

    at_threshold = await encode_artifact(artifact, compression_threshold_bytes=raw_size)
    below_threshold = await encode_artifact(artifact, compression_threshold_bytes=raw_size - 1)

    assert at_threshold.compressed is False
    assert below_threshold.compressed is True


@pytest.mark.asyncio
async def test_non_json_scalars_use_fixed_rendering():
    moment = datetime(2026, 1, 2, 3, 4, 5, tzinfo=UTC)
    artifact = make_artifact(files=[{"_id": "f1", "at": moment, "blob": b"xy"}])

    decoded = await decode_artifact((await encode_artifact(artifact)).data)

    document = decoded.record_sets["files"][0]
    assert document["at"] == moment.isoformat()
    assert document["blob"] == base64.b64encode(b"xy").decode("ascii")


def test_filename_is_timestamped_without_separators():
    generated_at = datetime(2026, 3, 1, 2, 30, 0, 123456, tzinfo=UTC)

    name = artifact_filename("docvault", generated_at, compressed=False)

    assert name == "docvault-full-backup-2026-03-01T02-30-00-123456+00-00.json"
    assert artifact_filename("acme", generated_at, compressed=True).endswith(".json.zst")


# ============================================================================
# Decoding
# ============================================================================

@pytest.mark.asyncio
async def test_format_is_detected_from_content_not_name():
    """Compressed bytes decode the same whatever the file was called."""
    artifact = make_artifact(users=[{"_id": "u1"}])
    packed = await encode_artifact(artifact, compression_threshold_bytes=0)

    renamed_copy = bytes(packed.data)
    decoded = await decode_artifact(renamed_copy)

    assert decoded.record_sets == {"users": [{"_id": "u1"}]}
    assert decoded.generated_at == artifact.generated_at


@pytest.mark.asyncio
async def test_legacy_gzip_artifact_is_accepted():
    legacy = {
        "schemaVersion": 1,
        "generatedAt": "2025-11-20T08:00:00.000Z",
        "nodeEnv": "production",
        "collections": {
            "User": [{"_id": "64f0c0ffee", "email": "a@example.com"}],
            "Course": [],
        },
    }
    data = gzip.compress(json.dumps(legacy).encode("utf-8"))

    artifact = await decode_artifact(data)

    assert artifact.environment == "production"
    assert artifact.set_names == ["User", "Course"]
    assert artifact.record_sets["User"][0]["_id"] == "64f0c0ffee"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "payload",
    [
        [],
        {"schemaVersion": 1, "generatedAt": "2026-01-01T00:00:00+00:00"},
        {"schemaVersion": 1, "generatedAt": "2026-01-01T00:00:00+00:00", "recordSets": []},
        {
            "schemaVersion": 1,
            "generatedAt": "2026-01-01T00:00:00+00:00",
            "recordSets": {"users": {"_id": "u1"}},
        },
        {
            "schemaVersion": 1,
            "generatedAt": "2026-01-01T00:00:00+00:00",
            "recordSets": {"users": ["not-a-document"]},
        },
        {"generatedAt": "2026-01-01T00:00:00+00:00", "recordSets": {}},
        {"schemaVersion": True, "generatedAt": "2026-01-01T00:00:00+00:00", "recordSets": {}},
        {"schemaVersion": 1, "generatedAt": "yesterday", "recordSets": {}},
    ],
)
async def test_bad_structure_is_rejected(payload):
    with pytest.raises(InvalidArtifact):
        await decode_artifact(json.dumps(payload).encode("utf-8"))


@pytest.mark.asyncio
async def test_unsupported_schema_version_is_rejected():
    payload = {"schemaVersion": 2, "generatedAt": "2026-01-01T00:00:00+00:00", "recordSets": {}}

    with pytest.raises(InvalidArtifact) as exc_info:
        await decode_artifact(json.dumps(payload).encode("utf-8"))

    assert "schemaVersion" in exc_info.value.message


@pytest.mark.asyncio
async def test_garbage_bytes_are_rejected():
    with pytest.raises(InvalidArtifact):
        await decode_artifact(b"\x00\x01 definitely not a backup")


@pytest.mark.asyncio
async def test_compressed_non_json_is_rejected():
    with pytest.raises(InvalidArtifact):
        await decode_artifact(gzip.compress(b"<html>not json</html>"))


@pytest.mark.asyncio
async def test_decoding_a_decoded_artifact_is_rejected():
    """Only raw bytes are accepted; an in-memory tree is not an artifact."""
    artifact = make_artifact(users=[])

    with pytest.raises(InvalidArtifact):
        await decode_artifact(artifact)

    with pytest.raises(InvalidArtifact):
        await decode_artifact(artifact.to_payload())
