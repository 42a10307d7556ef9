"""
Append-only JSON-lines ledger recording migration progress.

Each line is one LedgerEntry. Entries are never rewritten; a resource is
done only when a "verified" line matches its live identity tuple
(kind, namespace, name, context, uid). Reading skips lines that do not
parse, so a torn final write from a crashed run never blocks a resume.
"""

import json
import os
from typing import Any, Dict, Iterator, List, Optional, Set, Tuple

from migration.errors import LedgerWriteError
from migration.models import LedgerEntry, LedgerPhase, WorkloadRef, identity_of
from utils.logging_utils import get_logger

logger = get_logger(__name__)

Identity = Tuple[str, str, str, str, str]


class MigrationLedger:
    """File-backed ledger with an in-memory index.

    The index holds every verified identity and the latest phase of each
    identity. It is rebuilt whenever the file size differs from the size
    seen at the last load, so appends made by another process are picked up.
    """

    def __init__(self, path: str):
        self.path = path
        self._verified: Set[Identity] = set()
        self._latest: Dict[Identity, LedgerEntry] = {}
        self._indexed_size: Optional[int] = None

    def _file_size(self) -> int:
        try:
            return os.path.getsize(self.path)
        except FileNotFoundError:
            return 0

    def entries(self) -> Iterator[LedgerEntry]:
        """Yield every parseable entry in file order."""
        if not os.path.exists(self.path):
            return
        with open(self.path, "r", encoding="utf-8", errors="replace") as f:
            for line_number, line in enumerate(f, 1):
                line = line.strip()
                if not line:
                    continue
                try:
                    yield LedgerEntry.from_dict(json.loads(line))
                except ValueError as e:
                    # json.JSONDecodeError is a ValueError
                    logger.debug(f"Skipping malformed ledger line {line_number} in {self.path}: {e}")

    def _index(self, entry: LedgerEntry) -> None:
        if entry.phase is LedgerPhase.VERIFIED:
            self._verified.add(entry.identity)
        self._latest[entry.identity] = entry

    def _refresh_index(self) -> None:
        size = self._file_size()
        if size == self._indexed_size:
            return
        self._verified = set()
        self._latest = {}
        for entry in self.entries():
            self._index(entry)
        self._indexed_size = size
        logger.debug(f"Indexed {len(self._latest)} resources ({len(self._verified)} verified) from {self.path}")

    def is_verified(self, ref: WorkloadRef, context_id: str, uid: Optional[str]) -> bool:
        """True if any verified entry matches the identity tuple exactly."""
        self._refresh_index()
        return identity_of(ref, context_id, uid) in self._verified

    def latest_phase(self, ref: WorkloadRef, context_id: str, uid: Optional[str]) -> Optional[LedgerPhase]:
        """Last phase recorded for the identity, or None if it was never touched."""
        self._refresh_index()
        entry = self._latest.get(identity_of(ref, context_id, uid))
        return entry.phase if entry else None

    def unfinished(self, context_id: str) -> List[LedgerEntry]:
        """Latest entry of every identity in the context whose last step is not verified."""
        self._refresh_index()
        return [
            entry
            for entry in self._latest.values()
            if entry.context == context_id and entry.phase is not LedgerPhase.VERIFIED
        ]

    def append(self, entry: LedgerEntry) -> None:
        """Durably append one entry.

        Raises:
            LedgerWriteError: If the file cannot be written or synced
        """
        line = json.dumps(entry.to_dict(), separators=(",", ":")) + "\n"
        try:
            with open(self.path, "a+b") as f:
                f.seek(0, os.SEEK_END)
                size_before = f.tell()
                prefix = b""
                if size_before > 0:
                    f.seek(-1, os.SEEK_END)
                    if f.read(1) != b"\n":
                        # A previous run died mid-line
                        prefix = b"\n"
                f.write(prefix + line.encode("utf-8"))
                f.flush()
                os.fsync(f.fileno())
                size_after = f.tell()
        except OSError as e:
            raise LedgerWriteError(self.path, e) from e

        # Keep the index current without a reload when nobody else wrote in between
        if self._indexed_size == size_before:
            self._index(entry)
            self._indexed_size = size_after

    def record(
        self,
        phase: LedgerPhase,
        ref: WorkloadRef,
        context_id: str,
        uid: Optional[str],
        extra: Any = "",
    ) -> LedgerEntry:
        """Build and append an entry for a workload."""
        entry = LedgerEntry(
            phase=phase,
            kind=ref.kind.value,
            namespace=ref.namespace,
            name=ref.name,
            context=context_id,
            uid=uid or "",
            extra=extra,
        )
        self.append(entry)
        logger.debug(f"Ledger: {phase.value} {ref}")
        return entry
