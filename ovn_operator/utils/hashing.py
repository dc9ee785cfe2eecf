"""
Content fingerprints stored in status.hash.
"""
import hashlib
import json

from pydantic import BaseModel


def fingerprint(model: BaseModel) -> str:
    """SHA-256 hex digest of the canonical JSON form of a model."""
    payload = json.dumps(model.model_dump(mode="json"), sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()
