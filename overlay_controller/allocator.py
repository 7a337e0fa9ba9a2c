"""Virtual address allocation for overlay peers."""

from __future__ import annotations

import ipaddress


DEFAULT_NETWORK = "10.0.0.0/24"
DEFAULT_FIRST_HOST = 2


class RegistryError(Exception):
    """Base class for registry failures surfaced to callers."""


class AddressSpaceExhausted(RegistryError):
    """Raised when no address is left in the configured block."""


class AddressAllocator:
    """Hand out addresses from a fixed block in strictly increasing order.

    The k-th successful call to :meth:`allocate` returns ``base + k - 1`` where
    ``base`` is ``network_address + first_host``.  Addresses are never released.
    The allocator has no lock of its own: callers must serialise access (the
    :class:`~overlay_controller.registry.PeerRegistry` does so with its lock).
    """

    def __init__(self, network: str = DEFAULT_NETWORK, first_host: int = DEFAULT_FIRST_HOST) -> None:
        try:
            self.network = ipaddress.IPv4Network(network)
        except ValueError as exc:
            raise ValueError(f"Invalid overlay network {network!r}: {exc}") from exc
        if first_host < 0 or first_host >= self.network.num_addresses:
            raise ValueError(f"First host offset {first_host} is outside {self.network}")
        self.first_host = first_host
        self._next = first_host

    @property
    def allocated(self) -> int:
        """Number of addresses issued so far."""

        return self._next - self.first_host

    @property
    def capacity(self) -> int:
        # Everything from the first host up to, but excluding, the broadcast address.
        return max(self.network.num_addresses - 1 - self.first_host, 0)

    def _address_at(self, offset: int) -> ipaddress.IPv4Address | None:
        if offset >= self.network.num_addresses - 1:
            return None
        return self.network.network_address + offset

    def peek(self) -> str | None:
        """Return the address the next call would issue, or ``None`` if exhausted."""

        address = self._address_at(self._next)
        return str(address) if address is not None else None

    def allocate(self) -> str:
        """Issue the next address; the counter only advances on success."""

        address = self._address_at(self._next)
        if address is None:
            raise AddressSpaceExhausted(
                f"No addresses left in {self.network} after {self.allocated} allocations"
            )
        self._next += 1
        return str(address)


__all__ = [
    "AddressAllocator",
    "AddressSpaceExhausted",
    "DEFAULT_FIRST_HOST",
    "DEFAULT_NETWORK",
    "RegistryError",
]
