"""JSON helpers for ceremony options and stored credentials."""
from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Mapping

from fido2.utils import websafe_encode

from .models import Credential

__all__ = [
    "convert_bytes_for_json",
    "credential_summary",
]


def convert_bytes_for_json(obj: Any) -> Any:
    """Recursively convert bytes-like objects to base64url strings for JSON serialization."""
    if isinstance(obj, (bytes, bytearray, memoryview)):
        return websafe_encode(bytes(obj))
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, Mapping):
        return {k: convert_bytes_for_json(v) for k, v in obj.items() if v is not None}
    if isinstance(obj, (list, tuple, set, frozenset)):
        return [convert_bytes_for_json(item) for item in obj]
    return obj


def credential_summary(credential: Credential) -> Dict[str, Any]:
    """Describe a stored credential without exposing its key material."""
    return {
        "credentialId": websafe_encode(credential.credential_id),
        "signCount": credential.sign_count,
        "deviceBacked": credential.device_backed,
        "transports": sorted(transport.value for transport in credential.transports),
    }
