"""
End-to-end registration through the server's worker pool
"""
import asyncio
import ipaddress
import threading
import time

import aiocoap
import pytest

from node_registration.config import ServerConfig
from node_registration.server import RegistrationServer
from node_registration.task import TaskState


def announce(server, address, mtype=aiocoap.CON):
    request = aiocoap.Message(code=aiocoap.POST, uri_path=('here_i_am',))
    request.mtype = mtype
    return server.listener.receive(request, address)


def wait_until(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


@pytest.fixture
def make_server(registry):
    servers = []

    def factory(discovery, **config):
        server = RegistrationServer(ServerConfig(**config), registry=registry, discovery=discovery)
        servers.append(server)
        return server

    yield factory
    for server in servers:
        server.executor.shutdown(wait=True, cancel_futures=True)


class TestRegistrationServer:
    """Test registration through the worker pool"""

    def test_concurrent_announcements_register_once(self, make_server, held_discovery, recording_backend):
        """Test that concurrent announcements of one node register it once"""
        server = make_server(held_discovery, workers=8)
        backend = recording_backend("2001:db8::", "/building")
        server.add_backend(backend)

        barrier = threading.Barrier(16)

        def announce_once():
            barrier.wait()
            announce(server, "2001:db8::42")

        threads = [threading.Thread(target=announce_once) for _ in range(16)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert held_discovery.sent_event.wait(timeout=5)
        assert wait_until(lambda: len(server.active_tasks()) <= 1)
        held_discovery.reply_all()
        assert wait_until(lambda: len(backend.processed) == 1)

        address = ipaddress.ip_address("2001:db8::42")
        assert held_discovery.sent == [address]
        assert backend.registered_nodes() == frozenset({address})
        assert backend.processed[0][1] == address

    def test_repeat_announcement_while_discovery_in_flight(self, make_server, held_discovery, recording_backend):
        """Test a repeat announcement while discovery is pending"""
        server = make_server(held_discovery)
        backend = recording_backend("10.1.", "/lab")
        server.add_backend(backend)

        first = announce(server, "10.1.0.9")
        assert held_discovery.sent_event.wait(timeout=5)
        second = announce(server, "10.1.0.9")

        # the second task ends at the dedup step while the first still waits
        assert wait_until(lambda: len(server.active_tasks()) == 1)
        held_discovery.reply_all()
        assert wait_until(lambda: len(backend.processed) == 1)

        assert first.code == aiocoap.CONTENT
        assert second.code == aiocoap.CONTENT
        assert len(held_discovery.sent) == 1

    def test_prefix_order_decides_backend(self, make_server, discovery, recording_backend):
        """Test that the first matching backend owns the node"""
        server = make_server(discovery)
        broad = recording_backend("2001:db8::", "/broad")
        specific = recording_backend("2001:db8::1", "/specific")
        server.add_backend(broad)
        server.add_backend(specific)

        announce(server, "2001:db8::1")

        assert wait_until(lambda: len(broad.processed) == 1)
        assert specific.processed == []
        assert specific.registered_nodes() == frozenset()

    def test_unmatched_node_is_ignored(self, make_server, discovery, recording_backend):
        """Test that a node without a backend is acknowledged and ignored"""
        server = make_server(discovery)
        backend = recording_backend("10.", "/lab")
        server.add_backend(backend)

        response = announce(server, "192.168.7.7")
        server.executor.shutdown(wait=True)

        assert response.code == aiocoap.CONTENT
        assert discovery.sent == []
        assert backend.registered_nodes() == frozenset()

    def test_stop_interrupts_waiting_registrations(self, make_server, held_discovery, recording_backend):
        """Test that stopping the server interrupts waiting registrations"""
        server = make_server(held_discovery)
        backend = recording_backend("10.", "/lab")
        server.add_backend(backend)

        announce(server, "10.0.0.1")
        assert held_discovery.sent_event.wait(timeout=5)
        tasks = server.active_tasks()

        asyncio.run(server.stop())

        assert [task.state for task in tasks] == [TaskState.FAILED]
        assert backend.processed == []
        assert server.active_tasks() == []

    def test_stats(self, make_server, discovery, recording_backend):
        """Test server statistics"""
        server = make_server(discovery, workers=3)
        server.add_backend(recording_backend("10.", "/lab"))

        announce(server, "10.0.0.1")
        server.executor.shutdown(wait=True)
        stats = server.get_stats()

        assert stats['workers'] == 3
        assert stats['is_running'] is False
        assert stats['backends'][0]['nodes'] == ["10.0.0.1"]

    def test_create_task_requires_discovery(self, registry):
        """Test that tasks cannot be created before a discovery client exists"""
        server = RegistrationServer(registry=registry)
        try:
            with pytest.raises(RuntimeError):
                server.create_task("10.0.0.1")
        finally:
            server.executor.shutdown()
