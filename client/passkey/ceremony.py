"""Registration and authentication ceremonies against a relying party.

Each ceremony runs ``begin -> perform -> finish`` exactly once:

1. POST the username to the begin endpoint and read the session header.
2. Normalise the returned options and hand them to the platform capability.
3. POST the transcoded result to the finish endpoint with the same session id.

Entry points never raise ceremony errors. They return a
:class:`CeremonyOutcome` whose ``state`` is either ``COMPLETED`` or ``FAILED``.
"""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Union

from .authdata import (
    AuthenticatorData,
    authenticator_data_from_attestation,
    parse_authenticator_data,
    parse_client_data,
)
from .config import ClientConfig
from .errors import (
    CapabilityError,
    CeremonyError,
    CeremonyInProgressError,
    DecodeError,
    ServerError,
    ValidationError,
)
from .options import normalize_authentication_options, normalize_registration_options
from .platform import (
    AssertionResult,
    PlatformCapability,
    RegistrationResult,
    open_platform_client,
)
from .transport import HttpResponse, RelyingPartyTransport, UrllibTransport

__all__ = [
    "CeremonyDiagnostics",
    "CeremonyKind",
    "CeremonyOrchestrator",
    "CeremonyOutcome",
    "CeremonyState",
    "perform_authentication",
    "perform_registration",
]


LOGGER = logging.getLogger("passkey.ceremony")

CeremonyResult = Union[RegistrationResult, AssertionResult]


class CeremonyKind(Enum):
    REGISTRATION = "registration"
    AUTHENTICATION = "authentication"


class CeremonyState(Enum):
    IDLE = "idle"
    AWAITING_CHALLENGE = "awaiting-challenge"
    AWAITING_PLATFORM_RESULT = "awaiting-platform-result"
    AWAITING_SERVER_VERIFICATION = "awaiting-server-verification"
    COMPLETED = "completed"
    FAILED = "failed"


_TRANSITIONS: Dict[CeremonyState, Tuple[CeremonyState, ...]] = {
    CeremonyState.IDLE: (CeremonyState.AWAITING_CHALLENGE, CeremonyState.FAILED),
    CeremonyState.AWAITING_CHALLENGE: (
        CeremonyState.AWAITING_PLATFORM_RESULT,
        CeremonyState.FAILED,
    ),
    CeremonyState.AWAITING_PLATFORM_RESULT: (
        CeremonyState.AWAITING_SERVER_VERIFICATION,
        CeremonyState.FAILED,
    ),
    CeremonyState.AWAITING_SERVER_VERIFICATION: (
        CeremonyState.COMPLETED,
        CeremonyState.FAILED,
    ),
    CeremonyState.COMPLETED: (),
    CeremonyState.FAILED: (),
}


@dataclass
class CeremonyDiagnostics:
    """Informational description of what the platform capability returned."""

    credential_id: str
    credential_type: str
    field_lengths: Dict[str, int] = field(default_factory=dict)
    client_data: Optional[Dict[str, Any]] = None
    client_data_error: Optional[str] = None
    authenticator_data: Optional[AuthenticatorData] = None
    authenticator_data_error: Optional[str] = None
    describe_error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "credentialId": self.credential_id,
            "type": self.credential_type,
            "fieldLengths": dict(self.field_lengths),
            "clientData": self.client_data,
            "clientDataError": self.client_data_error,
            "authenticatorData": (
                self.authenticator_data.to_dict() if self.authenticator_data else None
            ),
            "authenticatorDataError": self.authenticator_data_error,
            "describeError": self.describe_error,
        }


@dataclass(frozen=True)
class CeremonyOutcome:
    ceremony: CeremonyKind
    state: CeremonyState
    payload: Any = None
    error: Optional[CeremonyError] = None
    history: Tuple[CeremonyState, ...] = ()
    diagnostics: Optional[CeremonyDiagnostics] = None

    @property
    def completed(self) -> bool:
        return self.state is CeremonyState.COMPLETED

    @property
    def failed(self) -> bool:
        return self.state is CeremonyState.FAILED

    @property
    def error_kind(self) -> Optional[str]:
        return self.error.kind if self.error is not None else None


class _CeremonyRun:
    """State bookkeeping for one invocation."""

    def __init__(self, kind: CeremonyKind) -> None:
        self.kind = kind
        self.state = CeremonyState.IDLE
        self.history: List[CeremonyState] = [CeremonyState.IDLE]
        self.diagnostics: Optional[CeremonyDiagnostics] = None

    def advance(self, target: CeremonyState) -> None:
        if target not in _TRANSITIONS[self.state]:
            raise RuntimeError(f"illegal ceremony transition {self.state.value} -> {target.value}")
        LOGGER.debug("%s ceremony: %s -> %s", self.kind.value, self.state.value, target.value)
        self.state = target
        self.history.append(target)

    def complete(self, payload: Any) -> CeremonyOutcome:
        self.advance(CeremonyState.COMPLETED)
        return CeremonyOutcome(
            ceremony=self.kind,
            state=self.state,
            payload=payload,
            history=tuple(self.history),
            diagnostics=self.diagnostics,
        )

    def fail(self, error: CeremonyError) -> CeremonyOutcome:
        self.advance(CeremonyState.FAILED)
        return CeremonyOutcome(
            ceremony=self.kind,
            state=self.state,
            error=error,
            history=tuple(self.history),
            diagnostics=self.diagnostics,
        )


def _validate_username(username: Any) -> str:
    if not isinstance(username, str) or not username.strip():
        raise ValidationError("username must be a non-empty string")
    return username


def _describe_registration(result: RegistrationResult) -> CeremonyDiagnostics:
    diagnostics = CeremonyDiagnostics(
        credential_id=result.id,
        credential_type=result.type,
        field_lengths={
            "rawId": len(result.raw_id),
            "attestationObject": len(result.attestation_object),
            "clientDataJSON": len(result.client_data_json),
        },
    )
    _attach_client_data(diagnostics, result.client_data_json)
    try:
        auth_data = authenticator_data_from_attestation(result.attestation_object)
        diagnostics.authenticator_data = parse_authenticator_data(auth_data)
    except CeremonyError as exc:
        diagnostics.authenticator_data_error = exc.reason
    return diagnostics


def _describe_assertion(result: AssertionResult) -> CeremonyDiagnostics:
    field_lengths = {
        "rawId": len(result.raw_id),
        "authenticatorData": len(result.authenticator_data),
        "clientDataJSON": len(result.client_data_json),
        "signature": len(result.signature),
    }
    if result.user_handle is not None:
        field_lengths["userHandle"] = len(result.user_handle)

    diagnostics = CeremonyDiagnostics(
        credential_id=result.id,
        credential_type=result.type,
        field_lengths=field_lengths,
    )
    _attach_client_data(diagnostics, result.client_data_json)
    try:
        diagnostics.authenticator_data = parse_authenticator_data(result.authenticator_data)
    except CeremonyError as exc:
        diagnostics.authenticator_data_error = exc.reason
    return diagnostics


def _attach_client_data(diagnostics: CeremonyDiagnostics, client_data_json: bytes) -> None:
    try:
        diagnostics.client_data = parse_client_data(client_data_json)
    except DecodeError as exc:
        diagnostics.client_data_error = exc.reason


def _log_diagnostics(kind: CeremonyKind, diagnostics: CeremonyDiagnostics) -> None:
    LOGGER.debug(
        "%s result: id=%s type=%s lengths=%s",
        kind.value,
        diagnostics.credential_id,
        diagnostics.credential_type,
        diagnostics.field_lengths,
    )
    if diagnostics.authenticator_data is not None:
        auth_data = diagnostics.authenticator_data
        LOGGER.debug(
            "authenticator data: rpIdHash=%s UP=%s UV=%s counter=%d flags=0x%02x",
            auth_data.rp_id_hash_hex,
            auth_data.flags.user_present,
            auth_data.flags.user_verified,
            auth_data.signature_counter,
            auth_data.flags.raw,
        )
        if auth_data.trailing_error:
            LOGGER.debug("authenticator data trailing section not decoded: %s", auth_data.trailing_error)
    elif diagnostics.authenticator_data_error:
        LOGGER.debug("authenticator data not decoded: %s", diagnostics.authenticator_data_error)


def _safe_describe(definition: "_CeremonyDefinition", result: Any) -> CeremonyDiagnostics:
    try:
        diagnostics = definition.describe(result)
    except Exception as exc:
        LOGGER.warning("Could not describe the %s result: %s", definition.kind.value, exc)
        return CeremonyDiagnostics(
            credential_id=str(getattr(result, "id", "")),
            credential_type=str(getattr(result, "type", "")),
            describe_error=f"{type(exc).__name__}: {exc}",
        )
    _log_diagnostics(definition.kind, diagnostics)
    return diagnostics


def _encode_result(result: Any) -> Dict[str, Any]:
    try:
        return result.to_json()
    except CeremonyError:
        raise
    except Exception as exc:
        raise CapabilityError(
            f"platform result cannot be sent to the relying party: {exc}", cause=exc
        ) from exc


@dataclass(frozen=True)
class _CeremonyDefinition:
    kind: CeremonyKind
    begin_path: str
    finish_path: str
    normalize: Callable[[Any], Dict[str, Any]]
    perform: Callable[[PlatformCapability, Mapping[str, Any]], CeremonyResult]
    describe: Callable[[Any], CeremonyDiagnostics]


class CeremonyOrchestrator:
    """Run passkey ceremonies for a single caller.

    The orchestrator holds no state between ceremonies; the lock only
    guarantees that one ceremony is in flight at a time.
    """

    def __init__(
        self,
        transport: RelyingPartyTransport,
        capability: PlatformCapability,
        *,
        config: Optional[ClientConfig] = None,
    ) -> None:
        self.transport = transport
        self.capability = capability
        self.config = config or ClientConfig()
        self._lock = threading.Lock()

        self._registration = _CeremonyDefinition(
            kind=CeremonyKind.REGISTRATION,
            begin_path=self.config.register_begin_path,
            finish_path=self.config.register_finish_path,
            normalize=normalize_registration_options,
            perform=lambda capability, options: capability.create_credential(options),
            describe=_describe_registration,
        )
        self._authentication = _CeremonyDefinition(
            kind=CeremonyKind.AUTHENTICATION,
            begin_path=self.config.login_begin_path,
            finish_path=self.config.login_finish_path,
            normalize=normalize_authentication_options,
            perform=lambda capability, options: capability.get_assertion(options),
            describe=_describe_assertion,
        )

    @classmethod
    def from_config(
        cls,
        config: ClientConfig,
        capability: Optional[PlatformCapability] = None,
    ) -> "CeremonyOrchestrator":
        """Build an orchestrator talking HTTP to ``config.base_url``.

        Without an explicit capability the platform authenticator (or the
        first attached security key) is opened for the configured origin.
        """

        transport = UrllibTransport(
            config.base_url,
            timeout=config.timeout,
            verify_tls=config.verify_tls,
        )
        if capability is None:
            capability = open_platform_client(config.effective_origin)
        return cls(transport, capability, config=config)

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    def perform_registration(self, username: str) -> CeremonyOutcome:
        return self._run(self._registration, username)

    def perform_authentication(self, username: str) -> CeremonyOutcome:
        return self._run(self._authentication, username)

    def _run(self, definition: _CeremonyDefinition, username: Any) -> CeremonyOutcome:
        if not self._lock.acquire(blocking=False):
            LOGGER.warning("Rejected %s ceremony: another ceremony is in progress", definition.kind.value)
            run = _CeremonyRun(definition.kind)
            return run.fail(CeremonyInProgressError("another ceremony is already in progress"))
        try:
            return self._drive(definition, username)
        finally:
            self._lock.release()

    def _drive(self, definition: _CeremonyDefinition, username: Any) -> CeremonyOutcome:
        run = _CeremonyRun(definition.kind)
        try:
            username = _validate_username(username)
            run.advance(CeremonyState.AWAITING_CHALLENGE)
            LOGGER.info("Starting %s ceremony for %s", definition.kind.value, username)
            bundle, session_id = self._begin(definition, username)

            run.advance(CeremonyState.AWAITING_PLATFORM_RESULT)
            options = definition.normalize(bundle)
            result = self._perform(definition, options)
            run.diagnostics = _safe_describe(definition, result)
            body = _encode_result(result)

            run.advance(CeremonyState.AWAITING_SERVER_VERIFICATION)
            payload = self._finish(definition, body, session_id)
        except CeremonyError as exc:
            LOGGER.warning(
                "%s ceremony failed while %s: %s",
                definition.kind.value,
                run.state.value,
                exc.describe(),
            )
            return run.fail(exc)

        LOGGER.info("%s ceremony completed for %s", definition.kind.value, username)
        return run.complete(payload)

    def _begin(self, definition: _CeremonyDefinition, username: str) -> Tuple[Any, str]:
        response = self.transport.post_json(definition.begin_path, {"username": username})
        if not response.ok:
            raise ServerError(
                f"{definition.begin_path} rejected the request: {response.text}",
                status=response.status,
                body=response.text,
            )

        session_id = response.header(self.config.session_header)
        if not session_id:
            raise ServerError(
                f"{definition.begin_path} did not return a {self.config.session_header} header",
                status=response.status,
                body=response.text,
            )

        try:
            bundle = response.json()
        except DecodeError as exc:
            raise ServerError(
                f"{definition.begin_path} returned invalid options: {exc.reason}",
                status=response.status,
                body=response.text,
            ) from exc
        if not isinstance(bundle, Mapping):
            raise ServerError(
                f"{definition.begin_path} returned a JSON {type(bundle).__name__}, not an options object",
                status=response.status,
                body=response.text,
            )

        LOGGER.info("Received %s options, session %s", definition.kind.value, session_id)
        return bundle, session_id

    def _perform(self, definition: _CeremonyDefinition, options: Mapping[str, Any]) -> CeremonyResult:
        try:
            return definition.perform(self.capability, options)
        except CeremonyError:
            raise
        except Exception as exc:
            raise CapabilityError(str(exc) or type(exc).__name__, cause=exc) from exc

    def _finish(
        self,
        definition: _CeremonyDefinition,
        body: Dict[str, Any],
        session_id: str,
    ) -> Any:
        response: HttpResponse = self.transport.post_json(
            definition.finish_path,
            body,
            headers={self.config.session_header: session_id},
        )
        if not response.ok:
            raise ServerError(
                f"{definition.finish_path} rejected the {definition.kind.value}: {response.text}",
                status=response.status,
                body=response.text,
            )

        try:
            return response.json()
        except DecodeError:
            return response.text


def perform_registration(
    username: str,
    *,
    transport: RelyingPartyTransport,
    capability: PlatformCapability,
    config: Optional[ClientConfig] = None,
) -> CeremonyOutcome:
    return CeremonyOrchestrator(transport, capability, config=config).perform_registration(username)


def perform_authentication(
    username: str,
    *,
    transport: RelyingPartyTransport,
    capability: PlatformCapability,
    config: Optional[ClientConfig] = None,
) -> CeremonyOutcome:
    return CeremonyOrchestrator(transport, capability, config=config).perform_authentication(username)
