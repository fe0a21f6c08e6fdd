"""
Decryption-key provider.

Encrypted columns are searched and sorted with a per-user decryption key.
That key is stored encrypted next to the user's access token; the client
sends the secret that unlocks it in the ``X-Encryption`` header. The token is
identified by the ``jti`` claim of the bearer JWT.

Stored keys use AES-256-CBC with the format ``base64(ciphertext):base64(iv)``.

Usage:
    provider = AccessTokenDecryptionKeyProvider(token_store=lookup_encrypted_key)
    key = provider.get_decryption_key(request.headers)

    @router.get("/")
    def index(key: str | None = Depends(decryption_key_dependency(provider))):
        ...
"""

from __future__ import annotations

import base64
import binascii
import os
from collections.abc import Callable, Mapping
from typing import Protocol

import jwt
from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from fastapi import Request

from basemodel_shared.config.logging import get_logger
from basemodel_shared.config.settings import settings
from basemodel_shared.utils.exceptions import ForbiddenError

logger = get_logger(__name__)

_KEY_SIZE = 32
_BLOCK_SIZE = 128


class DecryptionError(ValueError):
    """Stored key could not be decrypted with the given secret."""


# =============================================================================
# AES-256-CBC helpers
# =============================================================================


def _normalize_key(secret: str | bytes) -> bytes:
    # Zero-padded / truncated to the AES-256 key length, like OpenSSL does
    raw = secret.encode("utf-8") if isinstance(secret, str) else secret
    return raw[:_KEY_SIZE].ljust(_KEY_SIZE, b"\0")


def encrypt_value(value: str, secret: str | bytes) -> str:
    """Encrypt ``value`` into ``base64(ciphertext):base64(iv)``."""
    iv = os.urandom(16)
    padder = padding.PKCS7(_BLOCK_SIZE).padder()
    data = padder.update(value.encode("utf-8")) + padder.finalize()
    encryptor = Cipher(algorithms.AES(_normalize_key(secret)), modes.CBC(iv)).encryptor()
    ciphertext = encryptor.update(data) + encryptor.finalize()
    return f"{base64.b64encode(ciphertext).decode()}:{base64.b64encode(iv).decode()}"


def decrypt_value(encrypted: str, secret: str | bytes) -> str:
    """Inverse of :func:`encrypt_value`. Raises DecryptionError on bad input."""
    try:
        ciphertext_b64, iv_b64 = encrypted.split(":", 1)
        ciphertext = base64.b64decode(ciphertext_b64)
        iv = base64.b64decode(iv_b64)
        decryptor = Cipher(algorithms.AES(_normalize_key(secret)), modes.CBC(iv)).decryptor()
        data = decryptor.update(ciphertext) + decryptor.finalize()
        unpadder = padding.PKCS7(_BLOCK_SIZE).unpadder()
        return (unpadder.update(data) + unpadder.finalize()).decode("utf-8")
    except (ValueError, binascii.Error, UnicodeDecodeError) as exc:
        raise DecryptionError("Stored decryption key could not be decrypted") from exc


# =============================================================================
# Providers
# =============================================================================


class DecryptionKeyProvider(Protocol):
    def get_decryption_key(self, headers: Mapping[str, str]) -> str | None: ...


# jti -> stored encrypted decryption key (or None if unknown)
TokenStore = Callable[[str], str | None]


class AccessTokenDecryptionKeyProvider:
    """Resolve the plaintext decryption key of the authenticated user."""

    def __init__(
        self,
        token_store: TokenStore,
        *,
        secret: str | None = None,
        algorithm: str | None = None,
        audience: str | None = None,
        header: str | None = None,
    ):
        self._token_store = token_store
        self._secret = secret if secret is not None else settings.jwt_secret
        self._algorithm = algorithm or settings.jwt_algorithm
        self._audience = audience if audience is not None else settings.jwt_audience
        self._header = header or settings.decryption_header

    def _token_id(self, bearer: str) -> str | None:
        options = {} if self._audience else {"verify_aud": False}
        claims = jwt.decode(
            bearer,
            self._secret,
            algorithms=[self._algorithm],
            audience=self._audience or None,
            options=options,
        )
        return claims.get("jti")

    def get_decryption_key(self, headers: Mapping[str, str]) -> str | None:
        """
        Return the plaintext key, or None when either header is missing.

        Raises jwt.InvalidTokenError for a bad token and DecryptionError when
        the secret does not unlock the stored key.
        """
        authorization = _header(headers, "Authorization")
        secret = _header(headers, self._header)
        if not authorization or not secret:
            return None

        scheme, _, bearer = authorization.strip().partition(" ")
        if scheme.lower() != "bearer" or not bearer.strip():
            return None

        token_id = self._token_id(bearer.strip())
        if not token_id:
            logger.warning("Access token has no jti claim")
            return None

        encrypted = self._token_store(token_id)
        if encrypted is None:
            logger.warning("No decryption key stored for access token")
            return None

        return decrypt_value(encrypted, secret)


def _header(headers: Mapping[str, str], name: str) -> str | None:
    value = headers.get(name)
    if value is None:
        value = headers.get(name.lower())
    return value


def decryption_key_dependency(provider: DecryptionKeyProvider | None) -> Callable[[Request], str | None]:
    """FastAPI dependency returning the request's decryption key (or None)."""

    def dependency(request: Request) -> str | None:
        if provider is None:
            return None
        try:
            return provider.get_decryption_key(request.headers)
        except (jwt.InvalidTokenError, DecryptionError) as exc:
            raise ForbiddenError("decrypt encrypted fields", reason=type(exc).__name__) from exc

    return dependency
