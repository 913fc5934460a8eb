"""Diagnostic decoding of authenticator data, client data and attestation objects.

Nothing in this module takes part in the ceremony protocol. The orchestrator
calls these helpers to describe what the authenticator signed, and reports
decode failures without changing the ceremony outcome.
"""
from __future__ import annotations

import io
import json
import struct
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Tuple

import cbor2

from .errors import DecodeError, MalformedAuthenticatorDataError

__all__ = [
    "AttestedCredential",
    "AuthenticatorData",
    "AuthenticatorFlags",
    "FLAG_AT",
    "FLAG_BE",
    "FLAG_BS",
    "FLAG_ED",
    "FLAG_UP",
    "FLAG_UV",
    "MIN_AUTHENTICATOR_DATA_LENGTH",
    "authenticator_data_from_attestation",
    "parse_authenticator_data",
    "parse_client_data",
]


FLAG_UP = 0x01
FLAG_UV = 0x04
FLAG_BE = 0x08
FLAG_BS = 0x10
FLAG_AT = 0x40
FLAG_ED = 0x80

_RP_ID_HASH_LENGTH = 32
_FLAGS_OFFSET = _RP_ID_HASH_LENGTH
_COUNTER_OFFSET = _FLAGS_OFFSET + 1
MIN_AUTHENTICATOR_DATA_LENGTH = _COUNTER_OFFSET + 4

_AAGUID_LENGTH = 16
_CREDENTIAL_ID_LENGTH_SIZE = 2


@dataclass(frozen=True)
class AuthenticatorFlags:
    raw: int

    @property
    def user_present(self) -> bool:
        return bool(self.raw & FLAG_UP)

    @property
    def user_verified(self) -> bool:
        return bool(self.raw & FLAG_UV)

    @property
    def backup_eligible(self) -> bool:
        return bool(self.raw & FLAG_BE)

    @property
    def backup_state(self) -> bool:
        return bool(self.raw & FLAG_BS)

    @property
    def attested_credential_data_included(self) -> bool:
        return bool(self.raw & FLAG_AT)

    @property
    def extension_data_included(self) -> bool:
        return bool(self.raw & FLAG_ED)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "userPresent": self.user_present,
            "userVerified": self.user_verified,
            "backupEligible": self.backup_eligible,
            "backupState": self.backup_state,
            "attestedCredentialDataIncluded": self.attested_credential_data_included,
            "extensionDataIncluded": self.extension_data_included,
            "rawByte": self.raw,
        }


@dataclass(frozen=True)
class AttestedCredential:
    aaguid: bytes
    credential_id: bytes
    public_key: Mapping[Any, Any]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "aaguid": self.aaguid.hex(),
            "credentialId": self.credential_id.hex(),
            "publicKeyAlgorithm": self.public_key.get(3),
            "publicKeyType": self.public_key.get(1),
        }


@dataclass(frozen=True)
class AuthenticatorData:
    rp_id_hash: bytes
    flags: AuthenticatorFlags
    signature_counter: int
    total_length: int
    attested_credential: Optional[AttestedCredential] = None
    extensions: Optional[Mapping[Any, Any]] = None
    trailing_error: Optional[str] = None

    @property
    def rp_id_hash_hex(self) -> str:
        return self.rp_id_hash.hex()

    def to_dict(self) -> Dict[str, Any]:
        record: Dict[str, Any] = {
            "relyingPartyIdHash": self.rp_id_hash_hex,
            "flags": self.flags.to_dict(),
            "signatureCounter": self.signature_counter,
            "totalLength": self.total_length,
        }
        if self.attested_credential is not None:
            record["attestedCredential"] = self.attested_credential.to_dict()
        if self.extensions is not None:
            record["extensions"] = {str(key): value for key, value in self.extensions.items()}
        if self.trailing_error is not None:
            record["trailingError"] = self.trailing_error
        return record


def _parse_attested_credential(data: bytes, offset: int) -> Tuple[AttestedCredential, int]:
    header_end = offset + _AAGUID_LENGTH + _CREDENTIAL_ID_LENGTH_SIZE
    if len(data) < header_end:
        raise MalformedAuthenticatorDataError(
            "attested credential data flag is set but the buffer ends before the credential id length"
        )

    aaguid = data[offset : offset + _AAGUID_LENGTH]
    (credential_id_length,) = struct.unpack_from(">H", data, offset + _AAGUID_LENGTH)
    credential_id_end = header_end + credential_id_length
    if len(data) < credential_id_end:
        raise MalformedAuthenticatorDataError(
            f"credential id declares {credential_id_length} bytes but only "
            f"{len(data) - header_end} remain"
        )
    credential_id = data[header_end:credential_id_end]

    stream = io.BytesIO(data)
    stream.seek(credential_id_end)
    try:
        public_key = cbor2.CBORDecoder(stream).decode()
    except (cbor2.CBORDecodeError, EOFError) as exc:
        raise MalformedAuthenticatorDataError(
            f"credential public key is not valid CBOR: {exc}"
        ) from exc
    if not isinstance(public_key, Mapping):
        raise MalformedAuthenticatorDataError("credential public key is not a COSE map")

    return AttestedCredential(aaguid, credential_id, public_key), stream.tell()


def parse_authenticator_data(data: bytes) -> AuthenticatorData:
    """Decode the fixed authenticator data header and any trailing sections.

    Layout: 32 byte RP ID hash, one flag byte, a 4 byte big-endian signature
    counter, then the attested credential data (flag bit 6) and the CBOR
    extension map (flag bit 7) when present. Only a buffer shorter than the
    header is rejected; a broken trailing section is kept in ``trailing_error``.
    """

    if not isinstance(data, (bytes, bytearray, memoryview)):
        raise MalformedAuthenticatorDataError(
            f"expected bytes-like authenticator data, got {type(data).__name__}"
        )
    data = bytes(data)

    if len(data) < MIN_AUTHENTICATOR_DATA_LENGTH:
        raise MalformedAuthenticatorDataError(
            f"authenticator data must be at least {MIN_AUTHENTICATOR_DATA_LENGTH} bytes, "
            f"got {len(data)}"
        )

    rp_id_hash = data[:_RP_ID_HASH_LENGTH]
    flags = AuthenticatorFlags(data[_FLAGS_OFFSET])
    (counter,) = struct.unpack_from(">I", data, _COUNTER_OFFSET)

    offset = MIN_AUTHENTICATOR_DATA_LENGTH
    attested: Optional[AttestedCredential] = None
    extensions: Optional[Mapping[Any, Any]] = None
    trailing_error: Optional[str] = None

    try:
        if flags.attested_credential_data_included and len(data) > offset:
            attested, offset = _parse_attested_credential(data, offset)

        if flags.extension_data_included and len(data) > offset:
            try:
                decoded = cbor2.loads(data[offset:])
            except (cbor2.CBORDecodeError, EOFError) as exc:
                raise MalformedAuthenticatorDataError(
                    f"extension data is not valid CBOR: {exc}"
                ) from exc
            if isinstance(decoded, Mapping):
                extensions = decoded
    except MalformedAuthenticatorDataError as exc:
        trailing_error = exc.reason

    return AuthenticatorData(
        rp_id_hash=rp_id_hash,
        flags=flags,
        signature_counter=counter,
        total_length=len(data),
        attested_credential=attested,
        extensions=extensions,
        trailing_error=trailing_error,
    )


def parse_client_data(data: bytes) -> Dict[str, Any]:
    """Decode client data JSON into a dictionary for display."""

    try:
        text = bytes(data).decode("utf-8")
    except (TypeError, UnicodeDecodeError) as exc:
        raise DecodeError(f"client data is not valid UTF-8: {exc}") from exc

    try:
        parsed = json.loads(text)
    except json.JSONDecodeError as exc:
        raise DecodeError(f"client data is not valid JSON: {exc}") from exc

    if not isinstance(parsed, dict):
        raise DecodeError("client data JSON is not an object")
    return parsed


def authenticator_data_from_attestation(attestation_object: bytes) -> bytes:
    """Extract the ``authData`` member of a CBOR attestation object."""

    try:
        decoded = cbor2.loads(bytes(attestation_object))
    except (cbor2.CBORDecodeError, EOFError, TypeError) as exc:
        raise MalformedAuthenticatorDataError(
            f"attestation object is not valid CBOR: {exc}"
        ) from exc

    if not isinstance(decoded, Mapping):
        raise MalformedAuthenticatorDataError("attestation object is not a CBOR map")

    auth_data = decoded.get("authData")
    if not isinstance(auth_data, (bytes, bytearray)):
        raise MalformedAuthenticatorDataError("attestation object has no authData member")
    return bytes(auth_data)
