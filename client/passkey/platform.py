"""Platform capability boundary: ceremony results and the python-fido2 adapter."""
from __future__ import annotations

import logging
import sys
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence, Type, TypeVar

from fido2.client import ClientError, DefaultClientDataCollector, Fido2Client, UserInteraction
from fido2.ctap import CtapError
from fido2.hid import CtapHidDevice
from fido2.webauthn import (
    AttestationConveyancePreference,
    AuthenticatorAttachment,
    AuthenticatorSelectionCriteria,
    AuthenticatorTransport,
    PublicKeyCredentialCreationOptions,
    PublicKeyCredentialDescriptor,
    PublicKeyCredentialParameters,
    PublicKeyCredentialRequestOptions,
    PublicKeyCredentialRpEntity,
    PublicKeyCredentialType,
    PublicKeyCredentialUserEntity,
    ResidentKeyRequirement,
    UserVerificationRequirement,
)

from . import codec
from .errors import CapabilityError

__all__ = [
    "AssertionResult",
    "Fido2PlatformCapability",
    "PlatformCapability",
    "RegistrationResult",
    "build_creation_options",
    "build_request_options",
    "open_platform_client",
]


LOGGER = logging.getLogger("passkey.platform")

_PUBLIC_KEY = "public-key"

E = TypeVar("E", bound=Enum)


@dataclass(frozen=True)
class RegistrationResult:
    """Output of the platform "create credential" primitive."""

    id: str
    raw_id: bytes
    attestation_object: bytes
    client_data_json: bytes
    type: str = _PUBLIC_KEY
    authenticator_attachment: Optional[str] = None

    def to_json(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "id": self.id,
            "rawId": codec.encode(self.raw_id),
            "type": self.type,
            "response": {
                "attestationObject": codec.encode(self.attestation_object),
                "clientDataJSON": codec.encode(self.client_data_json),
            },
        }
        if self.authenticator_attachment:
            payload["authenticatorAttachment"] = self.authenticator_attachment
        return payload


@dataclass(frozen=True)
class AssertionResult:
    """Output of the platform "get assertion" primitive."""

    id: str
    raw_id: bytes
    authenticator_data: bytes
    client_data_json: bytes
    signature: bytes
    user_handle: Optional[bytes] = None
    type: str = _PUBLIC_KEY
    authenticator_attachment: Optional[str] = None

    def to_json(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "id": self.id,
            "rawId": codec.encode(self.raw_id),
            "type": self.type,
            "response": {
                "authenticatorData": codec.encode(self.authenticator_data),
                "clientDataJSON": codec.encode(self.client_data_json),
                "signature": codec.encode(self.signature),
                "userHandle": codec.encode_optional(self.user_handle),
            },
        }
        if self.authenticator_attachment:
            payload["authenticatorAttachment"] = self.authenticator_attachment
        return payload


class PlatformCapability(Protocol):
    """Creates credentials and assertions from normalized options.

    Implementations raise :class:`CapabilityError` for every refusal,
    cancellation or timeout.
    """

    def create_credential(self, options: Mapping[str, Any]) -> RegistrationResult:
        ...

    def get_assertion(self, options: Mapping[str, Any]) -> AssertionResult:
        ...


def _coerce_enum(enum_cls: Type[E], value: Any) -> Optional[E]:
    if value is None:
        return None
    try:
        return enum_cls(value)
    except ValueError:
        # Unknown members are ignored, as a browser would.
        LOGGER.debug("Ignoring unknown %s value %r", enum_cls.__name__, value)
        return None


def _enum_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    return str(getattr(value, "value", value))


def _build_descriptors(entries: Any) -> Optional[List[PublicKeyCredentialDescriptor]]:
    if entries is None:
        return None

    descriptors: List[PublicKeyCredentialDescriptor] = []
    for entry in entries:
        if not isinstance(entry, Mapping) or not isinstance(entry.get("id"), bytes):
            continue
        transports_raw = entry.get("transports")
        transports: Optional[List[AuthenticatorTransport]] = None
        if isinstance(transports_raw, Sequence) and not isinstance(transports_raw, str):
            transports = [
                transport
                for transport in (
                    _coerce_enum(AuthenticatorTransport, item) for item in transports_raw
                )
                if transport is not None
            ]
        credential_type = _coerce_enum(PublicKeyCredentialType, entry.get("type", _PUBLIC_KEY))
        if credential_type is None:
            continue
        descriptors.append(
            PublicKeyCredentialDescriptor(
                type=credential_type,
                id=entry["id"],
                transports=transports,
            )
        )
    return descriptors


def _build_selection(raw: Any) -> Optional[AuthenticatorSelectionCriteria]:
    if not isinstance(raw, Mapping):
        return None
    return AuthenticatorSelectionCriteria(
        authenticator_attachment=_coerce_enum(
            AuthenticatorAttachment, raw.get("authenticatorAttachment")
        ),
        resident_key=_coerce_enum(ResidentKeyRequirement, raw.get("residentKey")),
        user_verification=_coerce_enum(
            UserVerificationRequirement, raw.get("userVerification")
        ),
        require_resident_key=bool(raw.get("requireResidentKey", False)),
    )


def build_creation_options(options: Mapping[str, Any]) -> PublicKeyCredentialCreationOptions:
    """Convert normalized registration options into python-fido2 objects."""

    try:
        rp = options["rp"]
        user = options["user"]
        challenge = options["challenge"]
    except KeyError as exc:
        raise CapabilityError(f"creation options are missing {exc.args[0]!r}") from exc

    if not isinstance(rp, Mapping) or not isinstance(user, Mapping):
        raise CapabilityError("creation options rp and user must be objects")
    if not isinstance(challenge, bytes) or not isinstance(user.get("id"), bytes):
        raise CapabilityError("creation options must carry a binary challenge and user id")

    params: List[PublicKeyCredentialParameters] = []
    for param in options.get("pubKeyCredParams") or []:
        if not isinstance(param, Mapping) or not isinstance(param.get("alg"), int):
            continue
        param_type = _coerce_enum(PublicKeyCredentialType, param.get("type", _PUBLIC_KEY))
        if param_type is not None:
            params.append(PublicKeyCredentialParameters(type=param_type, alg=param["alg"]))

    return PublicKeyCredentialCreationOptions(
        rp=PublicKeyCredentialRpEntity(name=rp.get("name") or rp.get("id"), id=rp.get("id")),
        user=PublicKeyCredentialUserEntity(
            name=user.get("name"),
            id=user["id"],
            display_name=user.get("displayName"),
        ),
        challenge=challenge,
        pub_key_cred_params=params,
        timeout=options.get("timeout"),
        exclude_credentials=_build_descriptors(options.get("excludeCredentials")),
        authenticator_selection=_build_selection(options.get("authenticatorSelection")),
        attestation=_coerce_enum(AttestationConveyancePreference, options.get("attestation")),
        extensions=options.get("extensions"),
    )


def build_request_options(options: Mapping[str, Any]) -> PublicKeyCredentialRequestOptions:
    """Convert normalized authentication options into python-fido2 objects."""

    challenge = options.get("challenge")
    if not isinstance(challenge, bytes):
        raise CapabilityError("request options must carry a binary challenge")

    return PublicKeyCredentialRequestOptions(
        challenge=challenge,
        timeout=options.get("timeout"),
        rp_id=options.get("rpId"),
        allow_credentials=_build_descriptors(options.get("allowCredentials")),
        user_verification=_coerce_enum(
            UserVerificationRequirement, options.get("userVerification")
        ),
        extensions=options.get("extensions"),
    )


def _describe_client_error(exc: ClientError) -> str:
    code = getattr(exc, "code", None)
    name = getattr(code, "name", None) or str(code)
    cause = getattr(exc, "cause", None)
    if isinstance(cause, CtapError):
        return f"{name}: {cause.code.name}"
    if cause:
        return f"{name}: {cause}"
    return name


class Fido2PlatformCapability:
    """Drive a python-fido2 client (``Fido2Client`` or ``WindowsClient``)."""

    def __init__(self, client: Any) -> None:
        self.client = client

    def create_credential(self, options: Mapping[str, Any]) -> RegistrationResult:
        creation_options = build_creation_options(options)
        try:
            result = self.client.make_credential(creation_options)
        except ClientError as exc:
            raise CapabilityError(_describe_client_error(exc), cause=exc) from exc
        except CtapError as exc:
            raise CapabilityError(exc.code.name, cause=exc) from exc

        response = getattr(result, "response", result)
        attestation_object = response.attestation_object
        raw_id = getattr(result, "raw_id", None)
        if raw_id is None:
            raw_id = attestation_object.auth_data.credential_data.credential_id

        return RegistrationResult(
            id=codec.encode(raw_id),
            raw_id=bytes(raw_id),
            attestation_object=bytes(attestation_object),
            client_data_json=bytes(response.client_data),
            type=_enum_text(getattr(result, "type", None)) or _PUBLIC_KEY,
            authenticator_attachment=_enum_text(
                getattr(result, "authenticator_attachment", None)
            ),
        )

    def get_assertion(self, options: Mapping[str, Any]) -> AssertionResult:
        request_options = build_request_options(options)
        try:
            selection = self.client.get_assertion(request_options)
            result = selection.get_response(0)
        except ClientError as exc:
            raise CapabilityError(_describe_client_error(exc), cause=exc) from exc
        except CtapError as exc:
            raise CapabilityError(exc.code.name, cause=exc) from exc

        response = getattr(result, "response", result)
        raw_id = getattr(result, "raw_id", None)
        if raw_id is None:
            raw_id = getattr(response, "credential_id", None)
        if raw_id is None:
            raise CapabilityError("assertion did not identify the credential used")

        user_handle = getattr(response, "user_handle", None)
        return AssertionResult(
            id=codec.encode(raw_id),
            raw_id=bytes(raw_id),
            authenticator_data=bytes(response.authenticator_data),
            client_data_json=bytes(response.client_data),
            signature=bytes(response.signature),
            user_handle=bytes(user_handle) if user_handle is not None else None,
            type=_enum_text(getattr(result, "type", None)) or _PUBLIC_KEY,
            authenticator_attachment=_enum_text(
                getattr(result, "authenticator_attachment", None)
            ),
        )


def open_platform_client(
    origin: str,
    *,
    user_interaction: Optional[UserInteraction] = None,
) -> Fido2PlatformCapability:
    """Open the platform authenticator API, or the first attached HID key."""

    collector = DefaultClientDataCollector(origin)

    if sys.platform == "win32":
        from fido2.client.windows import WindowsClient

        if WindowsClient.is_available():
            LOGGER.info("Using the Windows WebAuthn API for origin %s", origin)
            return Fido2PlatformCapability(WindowsClient(collector))

    device = next(CtapHidDevice.list_devices(), None)
    if device is None:
        raise CapabilityError("no authenticator available")

    LOGGER.info("Using HID authenticator %s for origin %s", device, origin)
    return Fido2PlatformCapability(
        Fido2Client(
            device,
            client_data_collector=collector,
            user_interaction=user_interaction or UserInteraction(),
        )
    )
