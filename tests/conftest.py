"""
Shared fixtures: in-memory backends, discovery clients and executors
"""
import sys
import threading
from concurrent.futures import Future
from pathlib import Path

import aiocoap
import pytest

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from node_registration.backend import Backend
from node_registration.discovery import DiscoveryClient
from node_registration.errors import RequestConstructionError
from node_registration.registry import BackendRegistry


class RecordingBackend(Backend):
    """Backend that records every processed directory"""

    def __init__(self, prefix, path_prefix='/test', fail=False):
        super().__init__(prefix, path_prefix)
        self.processed = []
        self.fail = fail

    def process_well_known_core(self, response, address):
        if self.fail:
            raise RuntimeError("backend broken")
        self.processed.append((response, address))


class FakeDiscoveryClient(DiscoveryClient):
    """
    Discovery client that never touches the network.

    With ``auto_reply`` set, every request is answered immediately; otherwise
    bridges are held until :meth:`reply_all` is called.
    """

    def __init__(self, auto_reply=True, error=None, payload=b'</sensors/temp>;rt="temperature",</actuators/led>'):
        self.auto_reply = auto_reply
        self.error = error
        self.payload = payload
        self.sent = []
        self.pending = []
        self.exchanges = []
        self.sent_event = threading.Event()
        self._lock = threading.Lock()

    def send(self, address, bridge):
        if self.error is not None:
            raise self.error
        with self._lock:
            self.sent.append(address)
            self.pending.append(bridge)
            exchange = Future()
            self.exchanges.append(exchange)
        self.sent_event.set()
        if self.auto_reply:
            bridge.complete(self.response())
        return exchange

    def response(self):
        return aiocoap.Message(code=aiocoap.CONTENT, payload=self.payload)

    def reply_all(self):
        with self._lock:
            bridges, self.pending = self.pending, []
        for bridge in bridges:
            bridge.complete(self.response())


class ImmediateExecutor:
    """Executor running submitted work on the calling thread"""

    def __init__(self):
        self.submitted = []

    def submit(self, fn, *args, **kwargs):
        self.submitted.append(fn)
        return fn(*args, **kwargs)


class RecordingExecutor:
    """Executor that only records submitted work"""

    def __init__(self, closed=False):
        self.submitted = []
        self.closed = closed

    def submit(self, fn, *args, **kwargs):
        if self.closed:
            raise RuntimeError('cannot schedule new futures after shutdown')
        self.submitted.append(fn)


@pytest.fixture
def recording_backend():
    return RecordingBackend


@pytest.fixture
def discovery():
    return FakeDiscoveryClient()


@pytest.fixture
def held_discovery():
    return FakeDiscoveryClient(auto_reply=False)


@pytest.fixture
def registry():
    """Registry with a reverse lookup that knows no hostnames"""
    return BackendRegistry(hostname_resolver=str)


@pytest.fixture
def immediate_executor():
    return ImmediateExecutor()


@pytest.fixture
def recording_executor():
    return RecordingExecutor()


@pytest.fixture
def failing_discovery():
    return FakeDiscoveryClient(error=RequestConstructionError("too many options"))


@pytest.fixture
def closed_executor():
    return RecordingExecutor(closed=True)
