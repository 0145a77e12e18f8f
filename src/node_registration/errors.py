"""
Errors raised while registering a node.

None of these reach the announcing device: the acknowledgement is sent before
the registration runs, so a failure only ends the task that raised it.
"""


class RegistrationError(Exception):
    """Base class for every registration failure"""


class MalformedTargetError(RegistrationError):
    """The node address cannot be turned into a request target"""


class RequestConstructionError(RegistrationError):
    """The transport rejected the parameters of the discovery request"""


class DeliveryError(RegistrationError):
    """The discovery request was sent but no usable response came back"""


class DiscoveryTimeout(DeliveryError):
    """No response arrived before the configured discovery timeout"""


class WaitInterrupted(RegistrationError):
    """The worker was interrupted while waiting for the response"""
