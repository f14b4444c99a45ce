"""In-memory credential storage for testing and development.

Warning:
    Rows live in a Python dictionary and are **lost when the process exits**.
    Use this store only for unit tests, local development, and demos.

Design notes
------------
- ``_rows`` maps ``shop → EncryptedCredential``; the shop key makes the
  store unique per tenant exactly like the SQL table's primary key.
- Client-id lookups scan the rows and return the most recently written one.
- Mutating methods acquire ``_lock`` before touching shared state.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from shopgate.core.exceptions import CredentialNotFoundError
from shopgate.vault.store import CredentialStore

if TYPE_CHECKING:
    from shopgate.core.types import EncryptedCredential

logger = logging.getLogger(__name__)


class InMemoryCredentialStore(CredentialStore):
    """Dictionary-backed :class:`CredentialStore`.

    Example — pytest fixture::

        @pytest.fixture
        def store():
            store = InMemoryCredentialStore()
            yield store
            store.clear()
    """

    def __init__(self) -> None:
        self._rows: dict[str, EncryptedCredential] = {}
        self._lock = asyncio.Lock()

    async def get_by_shop(self, shop: str) -> EncryptedCredential:
        row = self._rows.get(shop)
        if row is None:
            raise CredentialNotFoundError(identifier=shop)
        return row

    async def get_by_client_id(self, client_id: str) -> EncryptedCredential:
        matches = [r for r in self._rows.values() if r.client_id == client_id]
        if not matches:
            raise CredentialNotFoundError(identifier=client_id)
        return max(matches, key=lambda r: r.updated_at)

    async def upsert(self, credential: EncryptedCredential) -> EncryptedCredential:
        async with self._lock:
            self._rows[credential.shop] = credential
        logger.debug("Upserted credential shop=%s", credential.shop)
        return credential

    async def delete(self, shop: str | None = None, client_id: str | None = None) -> int:
        async with self._lock:
            doomed = [
                key
                for key, row in self._rows.items()
                if (shop is not None and key == shop)
                or (client_id is not None and row.client_id == client_id)
            ]
            for key in doomed:
                del self._rows[key]
        return len(doomed)

    # ------------------------------------------------------------------
    # Test helpers
    # ------------------------------------------------------------------

    def clear(self) -> None:
        """Remove every row (synchronous; for test teardown)."""
        self._rows.clear()

    def __len__(self) -> int:
        return len(self._rows)


__all__ = ["InMemoryCredentialStore"]
