"""
Per-node registration workflow.

A task resolves the owning backend of an announcing node, skips nodes the
backend already knows, fetches the node's ``.well-known/core`` listing and
hands it to the backend. It runs on a worker thread and blocks that worker
while the discovery request is in flight.
"""
import logging
from enum import Enum
from typing import List, Optional

from .backend import Backend, normalize_address
from .bridge import ResponseBridge
from .discovery import DiscoveryClient
from .errors import RegistrationError, WaitInterrupted
from .registry import BackendRegistry


class TaskState(Enum):
    """Lifecycle of a registration task"""
    CREATED = 'created'
    RESOLVING = 'resolving'
    NO_BACKEND = 'no_backend'
    RESOLVED = 'resolved'
    DEDUPING = 'deduping'
    ALREADY_REGISTERED = 'already_registered'
    NEWLY_REGISTERED = 'newly_registered'
    REQUESTING = 'requesting'
    WAITING = 'waiting'
    RESPONSE_RECEIVED = 'response_received'
    FORWARDED = 'forwarded'
    FAILED = 'failed'

    @property
    def is_terminal(self) -> bool:
        return self in (TaskState.NO_BACKEND, TaskState.ALREADY_REGISTERED,
                        TaskState.FORWARDED, TaskState.FAILED)


class RegistrationTask:
    """
    Registration of one announcing node.

    Args:
        remote_address: Address the announcement came from
        registry: Backends to resolve the owner from
        discovery: Client used for the ``.well-known/core`` request
        discovery_timeout: Seconds to wait for the response, None for no limit
        release_on_failure: Forget the node again if discovery fails, so a
            later announcement retries. By default the node stays registered.
    """

    def __init__(self, remote_address, registry: BackendRegistry, discovery: DiscoveryClient,
                 discovery_timeout: Optional[float] = None, release_on_failure: bool = False):
        self.remote_address = remote_address
        self.registry = registry
        self.discovery = discovery
        self.discovery_timeout = discovery_timeout
        self.release_on_failure = release_on_failure
        self.bridge = ResponseBridge(label=str(remote_address))
        self.backend: Optional[Backend] = None
        self.exchange = None
        self.state = TaskState.CREATED
        self.history: List[TaskState] = [TaskState.CREATED]
        self.logger = logging.getLogger("RegistrationTask")

    def _enter(self, state: TaskState):
        self.state = state
        self.history.append(state)

    def run(self) -> TaskState:
        """
        Execute the workflow.

        Failures are logged and end the task in ``FAILED``; nothing is raised.

        Returns:
            The terminal state
        """
        try:
            self._run()
        except Exception as e:
            self._fail(e)
        return self.state

    def interrupt(self) -> bool:
        """
        Abort the task.

        A waiting task is released at once. A task that has not sent its
        discovery request yet stops before registering the node or sending.

        Returns:
            True if this call aborted the task
        """
        return self.bridge.fail(WaitInterrupted(f"Registration of {self.remote_address} interrupted"))

    def _raise_if_interrupted(self):
        if self.bridge.done:
            raise WaitInterrupted(f"Registration of {self.remote_address} interrupted")

    def _run(self):
        self._enter(TaskState.RESOLVING)
        self._raise_if_interrupted()
        address = normalize_address(self.remote_address)
        backend = self.registry.resolve(address)
        if backend is None:
            self.logger.debug(f"No backend found for IP address: {address}")
            self._enter(TaskState.NO_BACKEND)
            return
        self.backend = backend
        self._enter(TaskState.RESOLVED)

        self._enter(TaskState.DEDUPING)
        self._raise_if_interrupted()
        if not backend.claim(address):
            self.logger.debug(f"Remote address {address} already known.")
            self._enter(TaskState.ALREADY_REGISTERED)
            return
        self._enter(TaskState.NEWLY_REGISTERED)
        self.logger.info(f"New sensor node: {address} (backend {backend.path_prefix})")

        self._enter(TaskState.REQUESTING)
        if self.bridge.done:
            backend.release(address)
            self._raise_if_interrupted()
        self.exchange = self.discovery.send(address, self.bridge)

        self._enter(TaskState.WAITING)
        response = self.bridge.wait(self.discovery_timeout)
        self._enter(TaskState.RESPONSE_RECEIVED)

        backend.process_well_known_core(response, address)
        self._enter(TaskState.FORWARDED)

    def _fail(self, error: Exception):
        if isinstance(error, RegistrationError):
            self.logger.error(f"Registration of {self.remote_address} failed in state "
                              f"{self.state.value}: {type(error).__name__}: {error}", exc_info=error)
        else:
            self.logger.exception(f"Unexpected error registering {self.remote_address} "
                                  f"in state {self.state.value}")

        if self.release_on_failure and self.backend is not None and self.state in (
                TaskState.REQUESTING, TaskState.WAITING) and self.backend.release(self.remote_address):
            self.logger.info(f"Released {self.remote_address} from backend "
                             f"{self.backend.path_prefix} for a later retry")

        if self.exchange is not None:
            self.exchange.cancel()

        # a late response must not land in a finished task
        if not self.bridge.done:
            self.bridge.fail(error)
        self._enter(TaskState.FAILED)

    def __repr__(self) -> str:
        return f"RegistrationTask({self.remote_address!r}, state={self.state.value})"
