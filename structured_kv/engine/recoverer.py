"""
StoreRecoverer - Rebuild the ordered store from its WAL after a restart.
"""

import logging
import os

from structured_kv.interfaces.sorted_container import SortedContainer
from structured_kv.models.entry import MutationType
from structured_kv.models.value import Value
from structured_kv.models.wal import WAL

logger = logging.getLogger(__name__)


class StoreRecoverer:
    """
    Recovers store contents by replaying committed operations from a WAL.

    Each WAL record is one atomic commit, so replay applies whole commits
    and never exposes a partial one.
    """

    def recover(self, wal: WAL, container: SortedContainer) -> int:
        """
        Replay every WAL record into ``container``.

        A torn record left by a crash mid-append is cut off the end of the
        log, so appends after recovery follow the last complete commit.

        Args:
            wal: The WAL to replay. Must not be open yet.
            container: Empty sorted container to populate.

        Returns:
            The highest commit version seen (0 for an empty log).
        """
        last_seq = 0
        commits = 0
        entries = wal.replay()
        for entry in entries:
            for mutation in entry.mutations:
                if mutation.type == MutationType.SET:
                    container.put(mutation.key, Value(mutation.value, entry.versionstamp))
                else:
                    container.delete(mutation.key)
            last_seq = max(last_seq, entry.seq)
            commits += 1

        if entries.torn:
            dropped = os.path.getsize(wal.file_path) - entries.end_offset
            logger.warning(
                f"Truncating {dropped} bytes of torn tail record from {wal.file_path}"
            )
            wal.truncate(entries.end_offset)

        if commits:
            logger.info(
                f"Recovered {commits} commits ({container.size()} live keys) from {wal.file_path}"
            )
        return last_seq
