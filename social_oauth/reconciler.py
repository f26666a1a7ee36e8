"""Account roster reconciliation

Merges freshly observed account snapshots into the display list, keyed by
(provider, account_id).
"""

import logging
import threading
from typing import Iterable, List, Optional, Sequence, Tuple

from settings import MAX_CONNECTED_ACCOUNTS
from .errors import AccountLimitError
from .models import AccountSnapshot

logger = logging.getLogger(__name__)


def merge(existing: Sequence[AccountSnapshot], fresh: AccountSnapshot) -> List[AccountSnapshot]:
    """Replace the snapshot with the same key in place, or append it

    Args:
        existing: Current display list (not modified)
        fresh: Newly built snapshot

    Returns:
        New list with at most one snapshot per key
    """
    merged = list(existing)
    for index, snapshot in enumerate(merged):
        if snapshot.key == fresh.key:
            merged[index] = fresh
            return merged
    merged.append(fresh)
    return merged


class AccountRoster:
    """Display list of connected accounts"""

    def __init__(self, limit: int = MAX_CONNECTED_ACCOUNTS):
        self.limit = limit
        self._snapshots: List[AccountSnapshot] = []
        self._lock = threading.Lock()

    @property
    def snapshots(self) -> List[AccountSnapshot]:
        with self._lock:
            return list(self._snapshots)

    def get(self, provider: str, account_id: str) -> Optional[AccountSnapshot]:
        with self._lock:
            for snapshot in self._snapshots:
                if snapshot.key == (provider, account_id):
                    return snapshot
        return None

    def upsert(self, snapshot: AccountSnapshot) -> List[AccountSnapshot]:
        """Merge a snapshot into the roster

        Raises:
            AccountLimitError: Appending would exceed the limit
        """
        with self._lock:
            is_new = all(item.key != snapshot.key for item in self._snapshots)
            if is_new and len(self._snapshots) >= self.limit:
                raise AccountLimitError(
                    f"You can only connect up to {self.limit} accounts.", provider=snapshot.provider
                )
            self._snapshots = merge(self._snapshots, snapshot)
            if is_new:
                logger.info(f"Roster: added {snapshot.provider} account {snapshot.account_id}")
            return list(self._snapshots)

    def remove(self, provider: str, account_id: str) -> bool:
        with self._lock:
            before = len(self._snapshots)
            self._snapshots = [item for item in self._snapshots if item.key != (provider, account_id)]
            return len(self._snapshots) != before

    def retain(self, keys: Iterable[Tuple[str, str]]) -> List[AccountSnapshot]:
        """Drop snapshots whose (provider, account_id) is not in ``keys``

        Args:
            keys: Keys of the credentials still held by the store

        Returns:
            Removed snapshots
        """
        live = set(keys)
        with self._lock:
            removed = [item for item in self._snapshots if item.key not in live]
            if removed:
                self._snapshots = [item for item in self._snapshots if item.key in live]
        for snapshot in removed:
            logger.info(f"Roster: dropped {snapshot.provider} account {snapshot.account_id} (no stored credential)")
        return removed
