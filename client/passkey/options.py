"""Normalise relying-party options bundles into platform-ready form."""
from __future__ import annotations

import copy
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Mapping, MutableMapping

from . import codec
from .errors import DecodeError, ValidationError

__all__ = [
    "OptionsEnvelope",
    "OptionsShape",
    "normalize_authentication_options",
    "normalize_registration_options",
    "resolve_options_envelope",
]


LOGGER = logging.getLogger("passkey.options")

_WRAPPER_KEY = "publicKey"


class OptionsShape(Enum):
    WRAPPED = "wrapped"
    BARE = "bare"


@dataclass(frozen=True)
class OptionsEnvelope:
    """The options payload together with the shape it was delivered in."""

    shape: OptionsShape
    payload: Mapping[str, Any]


def resolve_options_envelope(raw: Any) -> OptionsEnvelope:
    """Select the options payload from a wrapped or bare server bundle.

    Relying parties built on python-fido2 or go-webauthn answer with
    ``{"publicKey": {...}}``; others return the options object directly.
    """

    if not isinstance(raw, Mapping):
        raise ValidationError(
            f"options bundle must be a JSON object, got {type(raw).__name__}"
        )

    wrapped = raw.get(_WRAPPER_KEY)
    if isinstance(wrapped, Mapping):
        return OptionsEnvelope(OptionsShape.WRAPPED, wrapped)
    return OptionsEnvelope(OptionsShape.BARE, raw)


def _decode_descriptor_ids(options: MutableMapping[str, Any], list_key: str) -> None:
    descriptors = options.get(list_key)
    if descriptors is None:
        return
    if not isinstance(descriptors, list):
        raise DecodeError(f"{list_key} must be a list, got {type(descriptors).__name__}")

    for descriptor in descriptors:
        if isinstance(descriptor, MutableMapping) and "id" in descriptor:
            descriptor["id"] = codec.decode(descriptor["id"])


def _decode_challenge(options: MutableMapping[str, Any]) -> None:
    if "challenge" in options:
        options["challenge"] = codec.decode(options["challenge"])


def _select_payload(raw: Any) -> Dict[str, Any]:
    envelope = resolve_options_envelope(raw)
    LOGGER.debug("Options bundle delivered in %s shape", envelope.shape.value)
    return copy.deepcopy(dict(envelope.payload))


def normalize_registration_options(raw: Any) -> Dict[str, Any]:
    """Return creation options with every binary field decoded to bytes.

    A missing ``excludeCredentials`` stays missing: the relying party placed
    no restriction on which authenticator may be used.
    """

    options = _select_payload(raw)
    _decode_challenge(options)

    user = options.get("user")
    if isinstance(user, MutableMapping) and "id" in user:
        user["id"] = codec.decode(user["id"])

    _decode_descriptor_ids(options, "excludeCredentials")
    return options


def normalize_authentication_options(raw: Any) -> Dict[str, Any]:
    """Return request options with the challenge and allowed ids decoded."""

    options = _select_payload(raw)
    _decode_challenge(options)
    _decode_descriptor_ids(options, "allowCredentials")
    return options
