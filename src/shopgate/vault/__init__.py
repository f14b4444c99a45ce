"""Credential vault — AEAD cipher, storage backends, and the vault facade."""

from shopgate.vault.cipher import NONCE_BYTES, TAG_BYTES, TokenCipher
from shopgate.vault.database import SQLAlchemyCredentialStore
from shopgate.vault.memory import InMemoryCredentialStore
from shopgate.vault.store import CredentialStore
from shopgate.vault.vault import CredentialVault

__all__ = [
    "NONCE_BYTES",
    "TAG_BYTES",
    "CredentialStore",
    "CredentialVault",
    "InMemoryCredentialStore",
    "SQLAlchemyCredentialStore",
    "TokenCipher",
]
