"""Join and query flows layered on top of :class:`PeerRegistry`."""

from __future__ import annotations

import logging
from typing import List

from .registry import PeerRecord, PeerRegistry

logger = logging.getLogger(__name__)


def format_endpoint(host: str, port: int) -> str:
    """Join *host* and *port*, bracketing IPv6 literals."""

    if ":" in host:
        return f"[{host}]:{port}"
    return f"{host}:{port}"


def _key_prefix(pubkey_b64: str) -> str:
    return pubkey_b64[:8] + "..."


class JoinProtocol:
    """Register a node from its claimed identity and its observed address.

    Neither the public key nor the declared port is verified: any caller can
    claim any node id.  Each join answers with the full roster.
    """

    def __init__(self, registry: PeerRegistry) -> None:
        self.registry = registry

    def join(self, node_id: str, pubkey_b64: str, udp_port: int, observed_host: str) -> List[PeerRecord]:
        endpoint = format_endpoint(observed_host, udp_port)
        record, created = self.registry.upsert_ex(node_id, pubkey_b64, endpoint)
        roster = self.registry.snapshot()
        logger.info(
            "[JOIN] Node '%s' (%s) %s from %s (UDP %d) -> Virtual IP: %s | Total peers: %d",
            node_id,
            _key_prefix(pubkey_b64),
            "registered" if created else "re-registered",
            observed_host,
            udp_port,
            record.virtual_ip,
            len(roster),
        )
        return roster


class QueryProtocol:
    """Read-only roster access."""

    def __init__(self, registry: PeerRegistry) -> None:
        self.registry = registry

    def peers(self) -> List[PeerRecord]:
        return self.registry.snapshot()


__all__ = ["JoinProtocol", "QueryProtocol", "format_endpoint"]
