"""PKCE helpers (RFC 7636, S256 method)."""

from __future__ import annotations

import base64
import hashlib
import os


def _base64url(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).decode("utf-8").rstrip("=")


def generate_code_verifier() -> str:
    return _base64url(os.urandom(32))


def generate_code_challenge(verifier: str) -> str:
    return _base64url(hashlib.sha256(verifier.encode("utf-8")).digest())
