"""AES-256-GCM token cipher.

Each encryption draws a fresh 12-byte nonce from the OS CSPRNG, so a nonce
is never reused under one key.  The stored blob is ``ciphertext || tag``
(tag length 16 bytes), base64-encoded, with the nonce stored alongside it::

    token_ciphertext_b64 = b64(ciphertext || tag)
    nonce_b64            = b64(nonce)

Decryption splits the blob at the fixed tag length and authenticates before
returning anything.  Any failure (bad base64, wrong nonce length, short blob,
tag mismatch, non-UTF-8 plaintext) raises
:class:`~shopgate.core.exceptions.CredentialIntegrityError`; partial or
altered plaintext is never returned.
"""

from __future__ import annotations

import base64
import binascii
import logging
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from shopgate.core.exceptions import ConfigurationError, CredentialIntegrityError

logger = logging.getLogger(__name__)

KEY_BYTES = 32
NONCE_BYTES = 12
TAG_BYTES = 16


class TokenCipher:
    """Authenticated encryption for platform access tokens.

    Args:
        key: Raw 32-byte AES-256 key.

    Raises:
        ConfigurationError: When *key* is not exactly 32 bytes.
    """

    ALG = "AES-256-GCM"

    def __init__(self, key: bytes) -> None:
        if not isinstance(key, bytes) or len(key) != KEY_BYTES:
            raise ConfigurationError(
                parameter="vault_key",
                reason=f"vault key must be exactly {KEY_BYTES} bytes (AES-256).",
            )
        self._aead = AESGCM(key)

    @classmethod
    def from_base64(cls, key_b64: str) -> TokenCipher:
        try:
            key = base64.b64decode(key_b64, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise ConfigurationError(
                parameter="vault_key", reason="vault key is not valid base64."
            ) from exc
        return cls(key)

    def encrypt(self, plaintext: str) -> tuple[str, str]:
        """Encrypt *plaintext* under a fresh nonce.

        Returns:
            ``(token_ciphertext_b64, nonce_b64)``.
        """
        nonce = os.urandom(NONCE_BYTES)
        blob = self._aead.encrypt(nonce, plaintext.encode("utf-8"), None)
        return (
            base64.b64encode(blob).decode("ascii"),
            base64.b64encode(nonce).decode("ascii"),
        )

    def decrypt(self, token_ciphertext_b64: str, nonce_b64: str, *, shop: str | None = None) -> str:
        """Authenticate and decrypt a stored blob.

        Args:
            token_ciphertext_b64: Base64 of ``ciphertext || tag``.
            nonce_b64: Base64 nonce.
            shop: Tenant, used only for error context.

        Returns:
            The plaintext token.

        Raises:
            CredentialIntegrityError: On any decoding or authentication failure.
        """
        try:
            blob = base64.b64decode(token_ciphertext_b64, validate=True)
            nonce = base64.b64decode(nonce_b64, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise CredentialIntegrityError(shop, {"stage": "decode"}) from exc

        if len(nonce) != NONCE_BYTES:
            raise CredentialIntegrityError(shop, {"stage": "nonce_length"})
        if len(blob) < TAG_BYTES:
            raise CredentialIntegrityError(shop, {"stage": "blob_length"})

        ciphertext, tag = blob[:-TAG_BYTES], blob[-TAG_BYTES:]
        try:
            plaintext = self._aead.decrypt(nonce, ciphertext + tag, None)
        except InvalidTag as exc:
            logger.error("Credential authentication failed shop=%s", shop)
            raise CredentialIntegrityError(shop, {"stage": "authenticate"}) from exc

        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise CredentialIntegrityError(shop, {"stage": "utf8"}) from exc


__all__ = ["KEY_BYTES", "NONCE_BYTES", "TAG_BYTES", "TokenCipher"]
