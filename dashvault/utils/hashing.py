import hashlib
import json
from typing import Any


def canonical_json_bytes(payload: Any) -> bytes:
    """Serialize a document to the exact bytes that are stored, hashed and sized."""
    return json.dumps(payload, indent=2, sort_keys=True, ensure_ascii=False).encode("utf-8")


def sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def stable_json(payload: Any) -> str:
    """Compact key-sorted form used for structural equality checks."""
    return json.dumps(payload, sort_keys=True, separators=(",", ":"))
