"""URL-safe base64 helpers used at every wire boundary."""
from __future__ import annotations

import base64
import binascii
import re
from typing import Any, Optional

from .errors import DecodeError

__all__ = ["decode", "encode", "encode_optional"]


_URLSAFE_PATTERN = re.compile(r"[A-Za-z0-9_-]*")


def _add_base64_padding(value: str) -> str:
    return value + "=" * (-len(value) % 4)


def encode(data: bytes) -> str:
    """Encode ``data`` as unpadded URL-safe base64."""

    if not isinstance(data, (bytes, bytearray, memoryview)):
        raise TypeError(f"expected bytes-like value, got {type(data).__name__}")
    return base64.urlsafe_b64encode(bytes(data)).decode("ascii").rstrip("=")


def encode_optional(data: Optional[bytes]) -> Optional[str]:
    if data is None:
        return None
    return encode(data)


def decode(text: Any) -> bytes:
    """Decode unpadded (or padded) URL-safe base64 text.

    Characters from the standard alphabet (``+`` and ``/``) are rejected so a
    value that was not produced by a URL-safe encoder is caught here instead
    of silently decoding to different bytes.
    """

    if not isinstance(text, str):
        raise DecodeError(f"expected base64url text, got {type(text).__name__}")

    candidate = text.rstrip("=")
    if not _URLSAFE_PATTERN.fullmatch(candidate):
        raise DecodeError("value contains characters outside the base64url alphabet")
    if len(candidate) % 4 == 1:
        raise DecodeError("value has an invalid base64url length")

    try:
        return base64.urlsafe_b64decode(_add_base64_padding(candidate))
    except (binascii.Error, ValueError) as exc:  # pragma: no cover - guarded above
        raise DecodeError(f"invalid base64url value: {exc}") from exc
