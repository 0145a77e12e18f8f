"""
Node registration server.

Wires the registration listener, the backend registry, the worker pool and
the CoAP transport together with an explicit start/stop lifecycle.
"""
import asyncio
import threading
import weakref
from concurrent.futures import ThreadPoolExecutor
from typing import Optional

import aiocoap

from .backend import Backend
from .config import ServerConfig
from .discovery import CoapDiscoveryClient, DiscoveryClient
from .listener import RegistrationListener
from .logger import get_logger
from .registry import BackendRegistry
from .task import RegistrationTask


class RegistrationServer:
    """
    CoAP server accepting ``/here_i_am`` announcements.

    Each registration occupies one worker for its whole run, including the
    wait for the discovery response, so ``config.workers`` bounds the number
    of discoveries in flight.

    Args:
        config: Server configuration
        registry: Backend registry (a new one if omitted)
        discovery: Discovery client; defaults to one bound to the server's
            own CoAP context once started
    """

    def __init__(self, config: Optional[ServerConfig] = None, registry: Optional[BackendRegistry] = None,
                 discovery: Optional[DiscoveryClient] = None):
        self.config = config or ServerConfig()
        self.registry = registry if registry is not None else BackendRegistry()
        self.discovery = discovery
        self.logger = get_logger("RegistrationServer")

        self.executor = ThreadPoolExecutor(max_workers=self.config.workers,
                                           thread_name_prefix="node-registration")
        self.listener = RegistrationListener(self.executor, self.create_task,
                                             self.config.registration_path)
        self.context: Optional[aiocoap.Context] = None
        self.is_running = False

        self._tasks = weakref.WeakSet()
        self._lock = threading.Lock()

    def add_backend(self, backend: Backend) -> bool:
        return self.registry.register(backend)

    def create_task(self, remote_address) -> RegistrationTask:
        """Build the registration task for an announcing node"""
        if self.discovery is None:
            raise RuntimeError("Registration server not started")
        task = RegistrationTask(
            remote_address,
            self.registry,
            self.discovery,
            discovery_timeout=self.config.discovery_timeout,
            release_on_failure=self.config.release_on_failure
        )
        with self._lock:
            self._tasks.add(task)
        return task

    def active_tasks(self):
        with self._lock:
            return [task for task in self._tasks if not task.state.is_terminal]

    async def start(self):
        """Bind the CoAP endpoint and start accepting announcements"""
        bind = (self.config.host, self.config.port)
        self.logger.info(f"Starting registration server on [{bind[0]}]:{bind[1]} "
                         f"with {self.config.workers} workers")

        self.context = await aiocoap.Context.create_server_context(self.listener, bind=bind)
        if self.discovery is None:
            self.discovery = CoapDiscoveryClient(self.context, asyncio.get_running_loop())
        self.is_running = True

        self.logger.info(f"Registration server started ({len(self.registry)} backends)")

    async def stop(self):
        """
        Stop the server.

        Queued registrations are cancelled, waiting ones are interrupted, and
        the transport is shut down once every worker has finished.
        """
        self.logger.info("Stopping registration server")
        self.is_running = False

        for task in self.active_tasks():
            task.interrupt()

        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, lambda: self.executor.shutdown(wait=True, cancel_futures=True))

        if self.context is not None:
            await self.context.shutdown()
            self.context = None

        self.logger.info("Registration server stopped")

    def get_stats(self) -> dict:
        stats = self.registry.get_stats()
        stats.update({
            'is_running': self.is_running,
            'workers': self.config.workers,
            'active_registrations': len(self.active_tasks())
        })
        return stats
