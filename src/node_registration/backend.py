"""
Backends that own groups of constrained devices.

A backend is selected for a device by matching the device address against the
backend prefix (see :mod:`node_registration.registry`). Once selected, the
backend remembers the device address so repeated announcements are ignored,
and it receives the device's ``.well-known/core`` listing for processing.
"""
import ipaddress
import logging
import threading
from abc import ABC, abstractmethod
from typing import Dict, FrozenSet, Union

from .errors import MalformedTargetError

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]


def normalize_address(address) -> IPAddress:
    """
    Convert a node address to the form used as a membership key.

    The zone/scope suffix of link-local IPv6 addresses is dropped and
    IPv4-mapped IPv6 addresses (as reported by dual-stack sockets) are
    unwrapped to plain IPv4.

    Args:
        address: Address text or an ``ipaddress`` object

    Returns:
        IPv4Address or IPv6Address

    Raises:
        MalformedTargetError: If the value is not an IP address
    """
    text = str(address).strip()
    if text.startswith('[') and text.endswith(']'):
        text = text[1:-1]
    text = text.split('%', 1)[0]
    try:
        parsed = ipaddress.ip_address(text)
    except ValueError as e:
        raise MalformedTargetError(f"Invalid node address {address!r}") from e

    if isinstance(parsed, ipaddress.IPv6Address) and parsed.ipv4_mapped is not None:
        return parsed.ipv4_mapped
    return parsed


class Backend(ABC):
    """
    Logical owner of a group of devices.

    Attributes:
        prefix: IP address text prefix or exact hostname of owned devices
        path_prefix: Path under which the proxy exposes this backend
    """

    def __init__(self, prefix: str, path_prefix: str):
        self.prefix = prefix
        self.path_prefix = path_prefix
        self._nodes = set()
        self._lock = threading.Lock()

    def claim(self, address) -> bool:
        """
        Register a node address if it is not yet known.

        Membership check and insertion happen under the backend lock, so of
        any number of concurrent claims for one address exactly one wins.

        Returns:
            True if this call inserted the address
        """
        key = normalize_address(address)
        with self._lock:
            if key in self._nodes:
                return False
            self._nodes.add(key)
            return True

    def release(self, address) -> bool:
        """Forget a node address. Returns True if it was registered."""
        key = normalize_address(address)
        with self._lock:
            if key not in self._nodes:
                return False
            self._nodes.discard(key)
            return True

    def is_registered(self, address) -> bool:
        key = normalize_address(address)
        with self._lock:
            return key in self._nodes

    def registered_nodes(self) -> FrozenSet[IPAddress]:
        with self._lock:
            return frozenset(self._nodes)

    @abstractmethod
    def process_well_known_core(self, response, address: IPAddress) -> None:
        """
        Process the resource directory listing of a newly registered node.

        Args:
            response: CoAP response to the ``.well-known/core`` request
            address: Address of the node that sent it
        """

    def __repr__(self) -> str:
        return (f"{type(self).__name__}(prefix={self.prefix!r}, "
                f"path_prefix={self.path_prefix!r}, nodes={len(self.registered_nodes())})")


class DirectoryCacheBackend(Backend):
    """
    Backend that keeps the last resource directory listing of each node.

    Used by the command line server when no richer backend is plugged in.
    """

    def __init__(self, prefix: str, path_prefix: str):
        super().__init__(prefix, path_prefix)
        self.logger = logging.getLogger(f"DirectoryCacheBackend-{path_prefix}")
        self.directories: Dict[IPAddress, str] = {}

    def process_well_known_core(self, response, address: IPAddress) -> None:
        payload = response.payload.decode("utf-8", errors="replace")
        self.directories[address] = payload
        self.logger.info(f"Node {address} ({response.code}) sent a {len(response.payload)} byte resource directory")
