"""
Registry of backends and the lookup that picks the owner of a device.

The lookup is first-match-wins in registration order: a broad prefix
registered early shadows a more specific one registered later.
"""
import logging
import socket
import threading
from typing import Callable, Optional, Tuple

from .backend import Backend, IPAddress, normalize_address


def reverse_lookup(address: IPAddress) -> str:
    """
    Resolve the hostname of an address, falling back to its literal text.
    """
    try:
        return socket.gethostbyaddr(str(address))[0]
    except (OSError, UnicodeError):
        return str(address)


class BackendRegistry:
    """
    Ordered, copy-on-write collection of backends.

    Lookups run concurrently on worker threads against an immutable snapshot;
    registration replaces the snapshot under a lock.
    """

    def __init__(self, hostname_resolver: Callable[[IPAddress], str] = reverse_lookup):
        self.hostname_resolver = hostname_resolver
        self.logger = logging.getLogger("BackendRegistry")
        self._backends: Tuple[Backend, ...] = ()
        self._lock = threading.Lock()

    def register(self, backend: Backend) -> bool:
        """
        Append a backend. Backends registered earlier win on ties.

        Returns:
            True once the backend was added
        """
        with self._lock:
            self._backends = self._backends + (backend,)
        self.logger.debug(f"Registered new backend for prefix: {backend.path_prefix}")
        return True

    def backends(self) -> Tuple[Backend, ...]:
        return self._backends

    def resolve(self, address) -> Optional[Backend]:
        """
        Find the backend responsible for a node address.

        A backend matches if its prefix is a prefix of the address literal,
        or if it equals the address hostname. The hostname is only looked up
        once, and only if some backend does not match by literal.

        Args:
            address: Node address

        Returns:
            First matching backend, or None
        """
        address = normalize_address(address)
        literal = str(address)
        hostname = None

        for backend in self._backends:
            self.logger.debug(f"Look up backend for address {literal} (prefix {backend.prefix})")
            if literal.startswith(backend.prefix):
                self.logger.debug(f"Backend found for address {literal}")
                return backend

            if hostname is None:
                hostname = self.hostname_resolver(address)
            if hostname == backend.prefix:
                self.logger.debug(f"Backend found for DNS name {hostname}")
                return backend

        return None

    def get_stats(self) -> dict:
        """Summary of registered backends and their known nodes"""
        return {
            'total_backends': len(self._backends),
            'backends': [
                {
                    'prefix': backend.prefix,
                    'path_prefix': backend.path_prefix,
                    'nodes': sorted(str(node) for node in backend.registered_nodes())
                }
                for backend in self._backends
            ]
        }

    def __len__(self) -> int:
        return len(self._backends)

    def __repr__(self) -> str:
        return f"BackendRegistry(backends={len(self._backends)})"
