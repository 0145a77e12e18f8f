"""
Inbound entry point for node announcements.

Devices announce themselves with a POST to ``/here_i_am``. The announcement is
acknowledged right away and the registration is scheduled on the worker pool;
the device is never told whether its registration succeeded.
"""
import logging
from concurrent.futures import Executor
from typing import Callable
from urllib.parse import urlsplit

import aiocoap
import aiocoap.resource as resource
from aiocoap.message import NoResponse

REGISTRATION_PATH = 'here_i_am'


class RegistrationListener(resource.Resource):
    """
    Root resource of the registration server.

    Args:
        executor: Worker pool running the registration tasks
        task_factory: Builds a task (with a ``run`` method) for a node address
        registration_path: Path segment announcements are posted to
    """

    def __init__(self, executor: Executor, task_factory: Callable, registration_path: str = REGISTRATION_PATH):
        super().__init__()
        self.executor = executor
        self.task_factory = task_factory
        self.registration_path = registration_path.strip('/')
        self.logger = logging.getLogger("RegistrationListener")

    async def render(self, request):
        return self.receive(request, remote_host(request))

    def receive(self, request: aiocoap.Message, remote_address):
        """
        Handle an inbound request without blocking.

        Args:
            request: Inbound CoAP request
            remote_address: Address of the sender

        Returns:
            Response message, or NoResponse for non-confirmable announcements
        """
        path = '/' + '/'.join(request.opt.uri_path)
        self.logger.debug(f"Received request from {remote_address} for resource {path}")

        if path != '/' + self.registration_path:
            return aiocoap.Message(code=aiocoap.NOT_FOUND)
        if request.code != aiocoap.POST:
            return aiocoap.Message(code=aiocoap.METHOD_NOT_ALLOWED)

        self.logger.debug("Schedule sending of request for .well-known/core")
        self.schedule(remote_address)

        if request.mtype == aiocoap.CON:
            return aiocoap.Message(code=aiocoap.CONTENT)
        return NoResponse

    def schedule(self, remote_address):
        try:
            task = self.task_factory(remote_address)
            self.executor.submit(task.run)
        except RuntimeError as e:
            self.logger.warning(f"Registration of {remote_address} not scheduled: {e}")


def remote_host(request: aiocoap.Message) -> str:
    """Host part of the endpoint a request came from"""
    sockaddr = getattr(request.remote, 'sockaddr', None)
    if sockaddr:
        return sockaddr[0]
    return urlsplit('//' + request.remote.hostinfo).hostname
