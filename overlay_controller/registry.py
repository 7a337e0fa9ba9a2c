"""In-memory peer table shared by every request handler."""

from __future__ import annotations

import threading
from dataclasses import asdict, dataclass
from typing import Dict, List, Optional, Tuple

from .allocator import AddressAllocator


@dataclass(frozen=True)
class PeerRecord:
    """A registered node as stored and as returned to clients."""

    node_id: str
    pubkey_b64: str
    endpoint: str
    virtual_ip: str

    def as_dict(self) -> Dict[str, str]:
        return asdict(self)


class PeerRegistry:
    """Authoritative table of known nodes keyed by node id.

    Every read and write runs under one exclusive lock, which also guards the
    owned :class:`AddressAllocator`.  Records are never removed.
    """

    def __init__(self, allocator: Optional[AddressAllocator] = None) -> None:
        self.allocator = allocator or AddressAllocator()
        self._peers: Dict[str, PeerRecord] = {}
        self._lock = threading.Lock()

    def upsert_ex(self, node_id: str, pubkey_b64: str, endpoint: str) -> Tuple[PeerRecord, bool]:
        """Insert or refresh *node_id*; return the stored record and whether it is new."""

        with self._lock:
            existing = self._peers.get(node_id)
            if existing is not None:
                virtual_ip = existing.virtual_ip
            else:
                # Raises AddressSpaceExhausted before the table is touched.
                virtual_ip = self.allocator.allocate()
            record = PeerRecord(
                node_id=node_id,
                pubkey_b64=pubkey_b64,
                endpoint=endpoint,
                virtual_ip=virtual_ip,
            )
            self._peers[node_id] = record
            return record, existing is None

    def upsert(self, node_id: str, pubkey_b64: str, endpoint: str) -> PeerRecord:
        record, _ = self.upsert_ex(node_id, pubkey_b64, endpoint)
        return record

    def snapshot(self) -> List[PeerRecord]:
        """Return one record per known node; order carries no meaning."""

        with self._lock:
            return list(self._peers.values())

    def get(self, node_id: str) -> Optional[PeerRecord]:
        with self._lock:
            return self._peers.get(node_id)

    def __contains__(self, node_id: object) -> bool:
        with self._lock:
            return node_id in self._peers

    def __len__(self) -> int:
        with self._lock:
            return len(self._peers)


__all__ = ["PeerRecord", "PeerRegistry"]
