"""Credential vault: encrypt-at-rest storage of per-tenant access tokens.

:class:`CredentialVault` composes a :class:`~shopgate.vault.cipher.TokenCipher`
with a :class:`~shopgate.vault.store.CredentialStore`.  Plaintext tokens only
exist in memory: they are encrypted before reaching the store and decrypted
only after the AEAD tag verifies.

Identifier handling
-------------------
Shops are canonicalised on the way in, so ``https://Foo.shopify.com/`` and
``foo.myshopify.com`` address the same row.  Reads prefer the most specific
identifier (``client_id``) and fall back to the shop.
"""

from __future__ import annotations

from datetime import UTC, datetime
import logging
from typing import TYPE_CHECKING

from shopgate.core.exceptions import CredentialNotFoundError, MalformedInputError
from shopgate.core.types import EncryptedCredential
from shopgate.resolution.shop_domain import ShopDomainResolver
from shopgate.utils.validation import validate_client_id

if TYPE_CHECKING:
    from shopgate.vault.cipher import TokenCipher
    from shopgate.vault.store import CredentialStore

logger = logging.getLogger(__name__)

MAX_TOKEN_LENGTH = 4096


class CredentialVault:
    """Encrypt, decrypt and delete per-tenant platform tokens.

    Args:
        cipher: AEAD cipher holding the vault key.
        store: Persistence backend for ciphertext rows.
        resolver: Shop-domain canonicaliser.

    Example::

        vault = CredentialVault(TokenCipher(key), InMemoryCredentialStore())
        await vault.encrypt("foo.myshopify.com", "shpat_abc123")
        token = await vault.decrypt(shop="foo.myshopify.com")
    """

    def __init__(
        self,
        cipher: TokenCipher,
        store: CredentialStore,
        resolver: ShopDomainResolver | None = None,
    ) -> None:
        self._cipher = cipher
        self._store = store
        self._resolver = resolver or ShopDomainResolver()

    @property
    def store(self) -> CredentialStore:
        return self._store

    def _canonical_shop(self, shop: str) -> str:
        canonical = self._resolver.canonicalize(shop)
        if not self._resolver.is_valid(canonical):
            raise MalformedInputError("shop", "not a valid storefront domain")
        return canonical

    @staticmethod
    def _checked_client_id(client_id: str | None) -> str | None:
        if client_id is None or client_id == "":
            return None
        if not validate_client_id(client_id):
            raise MalformedInputError("client_id", "contains unsupported characters")
        return client_id

    async def encrypt(
        self,
        shop: str,
        plaintext: str,
        client_id: str | None = None,
    ) -> EncryptedCredential:
        """Encrypt *plaintext* and upsert it as the row for *shop*.

        Repeated calls for the same shop leave exactly one row holding the
        latest ciphertext and nonce.

        Raises:
            MalformedInputError: Invalid shop, client id, or token length.
            UpstreamTimeoutError: The store did not answer in time.
            UpstreamFailureError: The store failed.
        """
        canonical = self._canonical_shop(shop)
        client_id = self._checked_client_id(client_id)
        if not plaintext:
            raise MalformedInputError("token", "must not be empty")
        if len(plaintext) > MAX_TOKEN_LENGTH:
            raise MalformedInputError("token", f"longer than {MAX_TOKEN_LENGTH} characters")

        ciphertext_b64, nonce_b64 = self._cipher.encrypt(plaintext)
        credential = EncryptedCredential(
            shop=canonical,
            client_id=client_id,
            token_ciphertext_b64=ciphertext_b64,
            nonce_b64=nonce_b64,
            updated_at=datetime.now(UTC),
        )
        return await self._store.upsert(credential)

    async def fetch(self, shop: str | None = None, client_id: str | None = None) -> EncryptedCredential:
        """Return the stored row, by client id first and shop second.

        Raises:
            MalformedInputError: When neither identifier is given.
            CredentialNotFoundError: When no row matches either identifier.
        """
        client_id = self._checked_client_id(client_id)
        canonical = self._canonical_shop(shop) if shop else None
        if client_id is None and canonical is None:
            raise MalformedInputError("shop", "a shop or client_id is required")

        if client_id is not None:
            try:
                return await self._store.get_by_client_id(client_id)
            except CredentialNotFoundError:
                if canonical is None:
                    raise
                logger.debug("No row for client_id; falling back to shop=%s", canonical)
                return await self._store.get_by_shop(canonical)
        return await self._store.get_by_shop(canonical or "")

    async def decrypt(self, shop: str | None = None, client_id: str | None = None) -> str:
        """Return the plaintext token for the tenant.

        Raises:
            MalformedInputError: When neither identifier is given.
            CredentialNotFoundError: When no row exists.
            CredentialIntegrityError: When the row fails authentication.
        """
        row = await self.fetch(shop=shop, client_id=client_id)
        return self.decrypt_row(row)

    def decrypt_row(self, row: EncryptedCredential) -> str:
        """Decrypt an already fetched *row* without another store read.

        Raises:
            CredentialIntegrityError: When the row fails authentication.
        """
        return self._cipher.decrypt(row.token_ciphertext_b64, row.nonce_b64, shop=row.shop)

    async def delete(self, shop: str | None = None, client_id: str | None = None) -> bool:
        """Remove the tenant's rows by either identifier.

        Idempotent: a missing row is success.

        Returns:
            ``True`` when at least one row was removed.
        """
        client_id = self._checked_client_id(client_id)
        canonical = self._canonical_shop(shop) if shop else None
        if client_id is None and canonical is None:
            raise MalformedInputError("shop", "a shop or client_id is required")
        removed = await self._store.delete(shop=canonical, client_id=client_id)
        if not removed:
            logger.debug("Delete found no credential shop=%s", canonical)
        return removed > 0

    async def has_credential(self, shop: str) -> bool:
        """Return ``True`` when an encrypted token is stored for *shop*."""
        return await self._store.exists(self._canonical_shop(shop))


__all__ = ["MAX_TOKEN_LENGTH", "CredentialVault"]
