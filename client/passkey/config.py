"""Client configuration loaded from the environment."""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Mapping, Optional
from urllib.parse import urlsplit

from .errors import ValidationError

__all__ = [
    "ClientConfig",
    "DEFAULT_BASE_URL",
    "DEFAULT_SESSION_HEADER",
    "configure_logging",
    "load_config",
]


DEFAULT_BASE_URL = "http://localhost:8080"
DEFAULT_SESSION_HEADER = "X-Session-ID"
DEFAULT_TIMEOUT = 30.0

_LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


@dataclass(frozen=True)
class ClientConfig:
    base_url: str = DEFAULT_BASE_URL
    origin: Optional[str] = None
    timeout: float = DEFAULT_TIMEOUT
    verify_tls: bool = True
    log_level: str = "INFO"
    session_header: str = DEFAULT_SESSION_HEADER
    register_begin_path: str = "/register/begin"
    register_finish_path: str = "/register/finish"
    login_begin_path: str = "/login/begin"
    login_finish_path: str = "/login/finish"

    @property
    def effective_origin(self) -> str:
        """The WebAuthn origin, defaulting to the relying party's own origin."""

        if self.origin:
            return self.origin.rstrip("/")
        parts = urlsplit(self.base_url)
        return f"{parts.scheme}://{parts.netloc}"


def _env_flag(environ: Mapping[str, str], name: str) -> Optional[bool]:
    """Return ``True`` or ``False`` when the named env var is explicitly set."""

    raw_value = environ.get(name)
    if raw_value is None:
        return None

    normalised = raw_value.strip().lower()
    if normalised in {"", "0", "false", "off", "no"}:
        return False
    return True


def _env_text(environ: Mapping[str, str], name: str) -> Optional[str]:
    raw_value = environ.get(name)
    if raw_value is None:
        return None
    stripped = raw_value.strip()
    return stripped or None


def _env_timeout(environ: Mapping[str, str], name: str) -> Optional[float]:
    raw_value = _env_text(environ, name)
    if raw_value is None:
        return None
    try:
        timeout = float(raw_value)
    except ValueError as exc:
        raise ValidationError(f"{name} must be a number of seconds, got {raw_value!r}") from exc
    if timeout <= 0:
        raise ValidationError(f"{name} must be positive, got {raw_value!r}")
    return timeout


def load_config(environ: Optional[Mapping[str, str]] = None) -> ClientConfig:
    """Build a :class:`ClientConfig` from ``PASSKEY_CLIENT_*`` variables."""

    env = os.environ if environ is None else environ
    defaults = ClientConfig()

    base_url = _env_text(env, "PASSKEY_CLIENT_BASE_URL") or defaults.base_url
    if urlsplit(base_url).scheme not in {"http", "https"}:
        raise ValidationError(f"PASSKEY_CLIENT_BASE_URL must be an http(s) URL, got {base_url!r}")

    verify_tls = _env_flag(env, "PASSKEY_CLIENT_VERIFY_TLS")
    timeout = _env_timeout(env, "PASSKEY_CLIENT_TIMEOUT")

    return ClientConfig(
        base_url=base_url,
        origin=_env_text(env, "PASSKEY_CLIENT_ORIGIN"),
        timeout=defaults.timeout if timeout is None else timeout,
        verify_tls=defaults.verify_tls if verify_tls is None else verify_tls,
        log_level=(_env_text(env, "PASSKEY_CLIENT_LOG_LEVEL") or defaults.log_level).upper(),
        session_header=_env_text(env, "PASSKEY_CLIENT_SESSION_HEADER") or defaults.session_header,
        register_begin_path=_env_text(env, "PASSKEY_CLIENT_REGISTER_BEGIN_PATH")
        or defaults.register_begin_path,
        register_finish_path=_env_text(env, "PASSKEY_CLIENT_REGISTER_FINISH_PATH")
        or defaults.register_finish_path,
        login_begin_path=_env_text(env, "PASSKEY_CLIENT_LOGIN_BEGIN_PATH")
        or defaults.login_begin_path,
        login_finish_path=_env_text(env, "PASSKEY_CLIENT_LOGIN_FINISH_PATH")
        or defaults.login_finish_path,
    )


def configure_logging(level: str = "INFO") -> logging.Logger:
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=_LOG_FORMAT)
    return logging.getLogger("passkey")
