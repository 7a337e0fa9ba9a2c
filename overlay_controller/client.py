"""Reference overlay node: join the controller and greet every peer over UDP.

The node keeps a persistent Curve25519 keypair on disk, registers itself with
``POST /join`` and sends each listed peer a ``crypto_box`` sealed hello to the
endpoint the controller observed for it.  Incoming datagrams are opened with
the keys from the roster, which is refreshed from ``GET /peers`` whenever a
datagram arrives from a key the node has not seen yet.
"""

from __future__ import annotations

import argparse
import base64
import logging
import os
import socket
import time
from dataclasses import dataclass
from typing import Any, Iterable, List, Optional, Sequence, Tuple

import httpx
from nacl.exceptions import CryptoError
from nacl.public import Box, PrivateKey, PublicKey
from nacl.utils import random as nacl_random

from .registry import PeerRecord

logger = logging.getLogger(__name__)

KEYFILE = "keypair.bin"
MAX_DATAGRAM = 4096
ROSTER_REFRESH_S = 5.0
_KEY_SIZE = PublicKey.SIZE


class ControllerError(Exception):
    """Raised when the controller answers with an error or an unusable roster."""


def encode_pubkey(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def decode_pubkey(text: str) -> bytes:
    """Decode a base64 key in either alphabet, with or without padding."""

    cleaned = text.strip().replace("+", "-").replace("/", "_")
    cleaned += "=" * (-len(cleaned) % 4)
    return base64.urlsafe_b64decode(cleaned)


@dataclass
class NodeKeypair:
    private_key: PrivateKey

    @property
    def public_key(self) -> PublicKey:
        return self.private_key.public_key

    @property
    def pubkey_b64(self) -> str:
        return encode_pubkey(bytes(self.public_key))

    @classmethod
    def generate(cls) -> "NodeKeypair":
        return cls(PrivateKey.generate())

    @classmethod
    def load(cls, path: str) -> "NodeKeypair":
        """Load a keypair stored as public key followed by secret key."""

        with open(path, "rb") as f:
            data = f.read()
        if len(data) != 2 * _KEY_SIZE:
            raise ValueError(f"Keypair file {path} must be {2 * _KEY_SIZE} bytes, got {len(data)}")
        keypair = cls(PrivateKey(data[_KEY_SIZE:]))
        if bytes(keypair.public_key) != data[:_KEY_SIZE]:
            raise ValueError(f"Keypair file {path} holds a public key that does not match its secret key")
        return keypair

    def save(self, path: str) -> None:
        with open(path, "wb") as f:
            f.write(bytes(self.public_key) + bytes(self.private_key))

    @classmethod
    def load_or_generate(cls, path: str) -> Tuple["NodeKeypair", bool]:
        """Return the stored keypair, creating and saving one if *path* is missing."""

        if os.path.exists(path):
            return cls.load(path), False
        keypair = cls.generate()
        try:
            keypair.save(path)
        except OSError as exc:
            logger.warning("[client] Failed to save keypair to %s: %s", path, exc)
        return keypair, True


def parse_endpoint(endpoint: str) -> Tuple[str, int]:
    """Split ``host:port`` (or ``[v6]:port``) into its parts."""

    host, sep, port_text = endpoint.rpartition(":")
    if not sep or not host:
        raise ValueError(f"Endpoint {endpoint!r} is not host:port")
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    port = int(port_text)
    if not 0 < port < 65536:
        raise ValueError(f"Endpoint {endpoint!r} has an invalid port")
    return host, port


def _records_from_payload(payload: Any) -> List[PeerRecord]:
    if not isinstance(payload, list):
        raise ControllerError("Controller roster must be a JSON array")
    try:
        return [
            PeerRecord(
                node_id=item["node_id"],
                pubkey_b64=item["pubkey_b64"],
                endpoint=item["endpoint"],
                virtual_ip=item["virtual_ip"],
            )
            for item in payload
        ]
    except (KeyError, TypeError) as exc:
        raise ControllerError(f"Malformed peer entry in roster: {exc}") from exc


class ControllerClient:
    """Thin ``httpx`` wrapper around the controller's two endpoints."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 5.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        if "://" not in base_url:
            base_url = f"http://{base_url}"
        self._http = httpx.Client(base_url=base_url, timeout=timeout, transport=transport)

    def _roster(self, response: httpx.Response) -> List[PeerRecord]:
        if response.is_error:
            raise ControllerError(
                f"Controller answered {response.status_code} for {response.request.url.path}: {response.text}"
            )
        try:
            payload = response.json()
        except ValueError as exc:
            raise ControllerError("Controller returned a body that is not JSON") from exc
        return _records_from_payload(payload)

    def join(self, node_id: str, pubkey_b64: str, udp_port: int) -> List[PeerRecord]:
        response = self._http.post(
            "/join",
            json={"node_id": node_id, "pubkey_b64": pubkey_b64, "udp_port": udp_port},
        )
        return self._roster(response)

    def peers(self) -> List[PeerRecord]:
        return self._roster(self._http.get("/peers"))

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> "ControllerClient":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


def seal_hello(keypair: NodeKeypair, peer_pubkey: bytes, text: str) -> bytes:
    """Encrypt *text* for *peer_pubkey*; the result is nonce followed by ciphertext."""

    box = Box(keypair.private_key, PublicKey(peer_pubkey))
    nonce = nacl_random(Box.NONCE_SIZE)
    return bytes(box.encrypt(text.encode("utf-8"), nonce))


def open_hello(
    keypair: NodeKeypair, peers: Iterable[PeerRecord], blob: bytes
) -> Optional[Tuple[PeerRecord, str]]:
    """Try every known peer key against *blob*; return the sender and text."""

    for peer in peers:
        try:
            box = Box(keypair.private_key, PublicKey(decode_pubkey(peer.pubkey_b64)))
            return peer, box.decrypt(blob).decode("utf-8")
        except (CryptoError, ValueError):
            continue
    return None


def greet_peers(
    sock: socket.socket,
    keypair: NodeKeypair,
    node_id: str,
    udp_port: int,
    peers: Iterable[PeerRecord],
) -> int:
    """Send a sealed hello to every peer other than ourselves; return how many went out."""

    message = f"hello from {node_id} at {udp_port}"
    sent = 0
    for peer in peers:
        if peer.node_id == node_id:
            continue
        try:
            peer_key = decode_pubkey(peer.pubkey_b64)
            if len(peer_key) != _KEY_SIZE:
                raise ValueError(f"key is {len(peer_key)} bytes")
            host, port = parse_endpoint(peer.endpoint)
        except ValueError as exc:
            logger.warning("[client] Skipping peer '%s': %s", peer.node_id, exc)
            continue
        try:
            sock.sendto(seal_hello(keypair, peer_key, message), (host, port))
        except OSError as exc:
            logger.warning("[client] sendto %s failed: %s", peer.endpoint, exc)
            continue
        logger.info("[client] Sent encrypted hello to %s (%s)", peer.node_id, peer.endpoint)
        sent += 1
    return sent


class RosterRefresher:
    """Re-fetch the roster from the controller, at most once per *min_interval* seconds.

    Controller failures are logged and leave the current roster in place.
    """

    def __init__(self, controller: ControllerClient, min_interval: float = ROSTER_REFRESH_S) -> None:
        self.controller = controller
        self.min_interval = min_interval
        self._last_attempt: Optional[float] = None

    def refresh(self, peers: List[PeerRecord]) -> bool:
        """Replace *peers* in place; return whether a new roster was fetched."""

        now = time.monotonic()
        if self._last_attempt is not None and now - self._last_attempt < self.min_interval:
            return False
        self._last_attempt = now
        try:
            peers[:] = self.controller.peers()
        except (ControllerError, httpx.HTTPError) as exc:
            logger.warning("[client] Roster refresh failed: %s", exc)
            return False
        return True


def receive_hello(
    sock: socket.socket,
    keypair: NodeKeypair,
    peers: List[PeerRecord],
    refresher: Optional[RosterRefresher] = None,
) -> Tuple[Optional[PeerRecord], bytes]:
    """Read one datagram and log who sent it.

    When the sender is unknown and a *refresher* is given, the roster is
    refreshed in place (rate limited) and the datagram is tried once more.
    """

    data, addr = sock.recvfrom(MAX_DATAGRAM)
    opened = open_hello(keypair, peers, data)
    if opened is None and refresher is not None and refresher.refresh(peers):
        opened = open_hello(keypair, peers, data)
    if opened is None:
        logger.info(
            "[incoming %d bytes] from %s:%d raw=%s", len(data), addr[0], addr[1], data[:64].hex()
        )
        return None, data
    peer, text = opened
    logger.info("[incoming] %s (%s) says: %s", peer.node_id, peer.virtual_ip, text)
    return peer, data


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Join an overlay controller and greet peers.")
    parser.add_argument("controller", help="Controller address, e.g. 127.0.0.1:8080")
    parser.add_argument("udp_port", type=int, help="Local UDP port to listen on")
    parser.add_argument("node_id", help="Identifier to register under")
    parser.add_argument("--keyfile", default=KEYFILE, help="Persistent keypair file")
    parser.add_argument("--timeout", type=float, default=5.0, help="Controller request timeout in seconds")
    parser.add_argument(
        "--refresh-interval",
        type=float,
        default=ROSTER_REFRESH_S,
        help="Minimum seconds between roster refreshes triggered by unknown senders",
    )
    parser.add_argument("--log-level", default="info")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> None:  # pragma: no cover - network loop
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=args.log_level.upper(), format="%(asctime)s %(levelname)s %(message)s")

    keypair, created = NodeKeypair.load_or_generate(args.keyfile)
    logger.info("[client] %s keypair %s", "Generated" if created else "Loaded", args.keyfile)

    with ControllerClient(args.controller, timeout=args.timeout) as controller:
        peers = controller.join(args.node_id, keypair.pubkey_b64, args.udp_port)
        logger.info("[client] Controller returned %d peers", len(peers))
        for peer in peers:
            logger.info("[client] Peer %s endpoint=%s virtual_ip=%s", peer.node_id, peer.endpoint, peer.virtual_ip)

        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
            sock.bind(("0.0.0.0", args.udp_port))
            logger.info("[client] UDP listening on %d", args.udp_port)
            greet_peers(sock, keypair, args.node_id, args.udp_port, peers)
            logger.info("[client] Entering receive loop (Ctrl-C to quit)")
            refresher = RosterRefresher(controller, args.refresh_interval)
            try:
                while True:
                    receive_hello(sock, keypair, peers, refresher)
            except KeyboardInterrupt:
                logger.info("[client] Interrupted, exiting")


__all__ = [
    "ControllerClient",
    "ControllerError",
    "NodeKeypair",
    "RosterRefresher",
    "decode_pubkey",
    "encode_pubkey",
    "greet_peers",
    "open_hello",
    "parse_endpoint",
    "receive_hello",
    "seal_hello",
]


if __name__ == "__main__":  # pragma: no cover
    main()
