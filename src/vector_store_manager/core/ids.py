from __future__ import annotations

import uuid

VECTOR_STORE_ID_PREFIX = "vs_"


def new_uuid() -> str:
    """Generate a new UUID4 as a string."""
    return str(uuid.uuid4())


def deterministic_uuid(name: str, namespace: uuid.UUID = uuid.NAMESPACE_URL) -> str:
    """Generate a deterministic UUID5 from a stable name."""
    return str(uuid.uuid5(namespace, name))


def new_vector_store_id() -> str:
    """Generate an external vector store id that is also a legal index collection name."""
    return f"{VECTOR_STORE_ID_PREFIX}{uuid.uuid4().hex}"


def new_file_id() -> str:
    return f"file_{uuid.uuid4().hex}"


def stable_int64(name: str) -> int:
    """Map a name onto a positive signed 64-bit integer."""
    return uuid.UUID(deterministic_uuid(name)).int >> 65
