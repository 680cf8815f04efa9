"""Deterministic identifiers for knowledge records."""

import hashlib
import uuid

# Fixed namespace so the same input maps to the same id across processes
KNOWLEDGE_NAMESPACE = uuid.UUID("6f1c1a52-3d4e-5b8a-9c0d-2e7f4a6b8c10")

CHUNK_SEPARATOR = "-chunk-"


def string_to_uuid(value: str) -> str:
    """Map an arbitrary string to a stable UUID string."""
    return str(uuid.uuid5(KNOWLEDGE_NAMESPACE, value))


def chunk_id(parent_id: str, index: int) -> str:
    return f"{parent_id}{CHUNK_SEPARATOR}{index}"


def content_hash(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()
