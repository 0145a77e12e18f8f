"""
CoAP node registration

Registers constrained devices announcing themselves at ``/here_i_am`` with
the backend owning their address, and fetches their resource directory.
"""

__version__ = "0.1.0"

from .backend import Backend, DirectoryCacheBackend
from .bridge import ResponseBridge
from .discovery import CoapDiscoveryClient, DiscoveryClient, format_target_uri
from .listener import RegistrationListener
from .registry import BackendRegistry
from .server import RegistrationServer
from .task import RegistrationTask, TaskState

__all__ = [
    "Backend",
    "DirectoryCacheBackend",
    "BackendRegistry",
    "ResponseBridge",
    "DiscoveryClient",
    "CoapDiscoveryClient",
    "format_target_uri",
    "RegistrationListener",
    "RegistrationTask",
    "TaskState",
    "RegistrationServer",
]
