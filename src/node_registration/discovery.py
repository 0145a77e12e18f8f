"""
Outbound discovery requests for a node's resource directory.
"""
import asyncio
import ipaddress
import logging
from abc import ABC, abstractmethod
from concurrent.futures import Future
from typing import Optional

import aiocoap

from .bridge import ResponseBridge
from .errors import DeliveryError, MalformedTargetError, RequestConstructionError

COAP_PORT = 5683
WELL_KNOWN_CORE = '.well-known/core'


def format_target_uri(address, port: int = COAP_PORT) -> str:
    """
    Build the ``.well-known/core`` URI of a node.

    IPv6 literals are bracketed and a zone suffix is removed.

    Args:
        address: Node address (text or ``ipaddress`` object)
        port: CoAP port of the node

    Returns:
        URI such as ``coap://[2001:db8::1]:5683/.well-known/core``
    """
    host = str(address).split('%', 1)[0].strip('[]')
    try:
        parsed = ipaddress.ip_address(host)
    except ValueError as e:
        raise MalformedTargetError(f"Cannot build target URI for {address!r}") from e

    if isinstance(parsed, ipaddress.IPv6Address):
        host = f"[{parsed}]"
    else:
        host = str(parsed)
    return f"coap://{host}:{port}/{WELL_KNOWN_CORE}"


class DiscoveryClient(ABC):
    """Sends discovery requests and reports the outcome through a bridge"""

    @abstractmethod
    def send(self, address, bridge: ResponseBridge) -> Optional[Future]:
        """
        Request the resource directory of a node.

        Must either raise (nothing was sent) or eventually resolve the bridge.

        Returns:
            Handle of the in-flight exchange whose ``cancel()`` abandons it,
            or None if the exchange cannot be cancelled
        """


class CoapDiscoveryClient(DiscoveryClient):
    """
    Discovery over an aiocoap context.

    :meth:`send` is called from worker threads; the exchange itself runs on
    the event loop that owns the context, and the bridge is resolved from
    that loop.
    """

    def __init__(self, context: aiocoap.Context, loop: asyncio.AbstractEventLoop,
                 port: int = COAP_PORT):
        self.context = context
        self.loop = loop
        self.port = port
        self.logger = logging.getLogger("CoapDiscoveryClient")

    def build_request(self, address) -> aiocoap.Message:
        uri = format_target_uri(address, self.port)
        try:
            return aiocoap.Message(code=aiocoap.GET, uri=uri, transport_tuning=aiocoap.Reliable())
        except (ValueError, TypeError) as e:
            raise RequestConstructionError(f"Invalid discovery request for {uri}") from e

    def send(self, address, bridge: ResponseBridge) -> Future:
        request = self.build_request(address)
        try:
            future = asyncio.run_coroutine_threadsafe(self._exchange(request, bridge, address), self.loop)
        except RuntimeError as e:
            raise DeliveryError(f"Transport loop unavailable for {address}") from e
        self.logger.debug(f"Request for /{WELL_KNOWN_CORE} resource at: {address} written.")
        return future

    async def _exchange(self, request: aiocoap.Message, bridge: ResponseBridge, address):
        try:
            response = await self.context.request(request).response
        except Exception as e:
            bridge.fail(DeliveryError(f"Discovery request to {address} failed: {e}"))
            return
        except asyncio.CancelledError:
            if not bridge.done:
                bridge.fail(DeliveryError(f"Discovery request to {address} cancelled"))
            self.logger.debug(f"Discovery request to {address} abandoned")
            raise

        self.logger.debug("Received response for well-known/core")
        bridge.complete(response)
