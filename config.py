"""
config.py — Relay Configuration
================================
Everything the relay reads from the environment, read exactly once at startup.

Environment variables:
  SMTP_HOST               — SMTP server hostname
  SMTP_PORT               — SMTP port (default: 587, use 465 with SMTP_SECURE)
  SMTP_USER               — Username for SMTP auth (optional)
  SMTP_PASS               — Password for SMTP auth (optional)
  SMTP_SECURE             — Implicit TLS from the first byte (default: false)
  SMTP_TLS_INSECURE       — Skip certificate validation (default: false, dev only)
  SMTP_TIMEOUT            — Socket timeout in seconds (default: 30)
  SMTP_VERIFY_ON_STARTUP  — Run the advisory connectivity check (default: true)
  DEFAULT_FROM            — Sender address for every outbound message
  MAX_ATTACHMENT_BYTES    — Per-file upload limit (default: 25 MiB)
  PORT                    — HTTP listening port (default: 3000)
  LOG_LEVEL               — Logging level (default: INFO, applied in main.py)

A .env file in the working directory is loaded first if present. Real
environment variables always win over .env entries.
"""

import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

MAX_ATTACHMENT_BYTES = 25 * 1024 * 1024

_TRUE = {"1", "true", "yes", "on"}


def _env_bool(env, name: str, default: bool) -> bool:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in _TRUE


def _env_int(env, name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}")


def _env_float(env, name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}")


@dataclass(frozen=True)
class SmtpConfig:
    """Connection parameters for the outbound SMTP endpoint."""
    host:         str = ""
    port:         int = 587
    username:     str = ""
    password:     str = field(default="", repr=False)
    sender:       str = ""
    secure:       bool = False   # implicit TLS (SMTPS)
    tls_insecure: bool = False   # skip certificate checks, never in production
    timeout:      float = 30.0

    def summary(self) -> dict:
        """Safe view for status endpoints and startup logs. Never includes the password."""
        return {
            "host":     self.host or "(not set)",
            "port":     self.port,
            "from":     self.sender or "(not set)",
            "auth":     bool(self.username),
            "secure":   self.secure,
            "insecure_tls": self.tls_insecure,
        }


@dataclass(frozen=True)
class RelayConfig:
    smtp:                 SmtpConfig
    http_port:            int = 3000
    max_attachment_bytes: int = MAX_ATTACHMENT_BYTES
    verify_on_startup:    bool = True

    @classmethod
    def from_env(cls, env=None, dotenv: bool = True) -> "RelayConfig":
        if env is None:
            if dotenv:
                load_dotenv()
            env = os.environ

        smtp = SmtpConfig(
            host=env.get("SMTP_HOST", "").strip(),
            port=_env_int(env, "SMTP_PORT", 587),
            username=env.get("SMTP_USER", ""),
            password=env.get("SMTP_PASS", ""),
            sender=env.get("DEFAULT_FROM", "").strip(),
            secure=_env_bool(env, "SMTP_SECURE", False),
            tls_insecure=_env_bool(env, "SMTP_TLS_INSECURE", False),
            timeout=_env_float(env, "SMTP_TIMEOUT", 30.0),
        )
        return cls(
            smtp=smtp,
            http_port=_env_int(env, "PORT", 3000),
            max_attachment_bytes=_env_int(env, "MAX_ATTACHMENT_BYTES", MAX_ATTACHMENT_BYTES),
            verify_on_startup=_env_bool(env, "SMTP_VERIFY_ON_STARTUP", True),
        )
