"""Abstract credential storage interface — the repository pattern.

``CredentialStore`` defines the persistence contract for
:class:`~shopgate.core.types.EncryptedCredential` rows.  It only ever sees
ciphertext: encryption and decryption belong to
:class:`~shopgate.vault.vault.CredentialVault`.

Implementations must be:

- **Fully async** — every method is a coroutine.
- **Concurrency-safe** — instances are created once at startup and shared
  across all requests.
- **Raise on not-found** — single-row lookups raise
  :class:`~shopgate.core.exceptions.CredentialNotFoundError`, never return
  ``None``.
- **Whole-row upserts** — :meth:`CredentialStore.upsert` replaces every
  field of a conflicting row in one statement, so ciphertext and nonce are
  never mixed across writes (last write wins).
- **Bounded** — backends that perform I/O raise
  :class:`~shopgate.core.exceptions.UpstreamTimeoutError` when an operation
  exceeds its budget and
  :class:`~shopgate.core.exceptions.UpstreamFailureError` on driver errors.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
import logging
from typing import TYPE_CHECKING

from shopgate.core.exceptions import CredentialNotFoundError

if TYPE_CHECKING:
    from shopgate.core.types import EncryptedCredential

logger = logging.getLogger(__name__)


class CredentialStore(ABC):
    """Abstract base class for encrypted-credential storage backends."""

    ############################
    # Required operations      #
    ############################

    @abstractmethod
    async def get_by_shop(self, shop: str) -> EncryptedCredential:
        """Fetch the row for canonical *shop*.

        Raises:
            CredentialNotFoundError: When no row exists.
        """

    @abstractmethod
    async def get_by_client_id(self, client_id: str) -> EncryptedCredential:
        """Fetch the most recently written row carrying *client_id*.

        Raises:
            CredentialNotFoundError: When no row exists.
        """

    @abstractmethod
    async def upsert(self, credential: EncryptedCredential) -> EncryptedCredential:
        """Insert *credential*, or replace the whole existing row for its shop."""

    @abstractmethod
    async def delete(self, shop: str | None = None, client_id: str | None = None) -> int:
        """Delete rows matching *shop* or *client_id*.

        Returns:
            Number of rows removed (``0`` is success, not an error).
        """

    #############################
    # Optional / default helpers #
    #############################

    async def exists(self, shop: str) -> bool:
        """Return ``True`` when a row for *shop* exists."""
        try:
            await self.get_by_shop(shop)
        except CredentialNotFoundError:
            return False
        return True

    async def initialize(self) -> None:
        """Prepare the backend (create tables, open pools).  No-op by default."""

    async def close(self) -> None:
        """Release backend resources.  No-op by default."""


__all__ = ["CredentialStore"]
