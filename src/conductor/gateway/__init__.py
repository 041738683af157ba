from conductor.gateway.base import (
    COMMANDS,
    NO_REQUEST_COMMANDS,
    RemoteCommandGateway,
    coerce_result,
    is_app_result,
    to_app_error,
)
from conductor.gateway.process import ProcessGateway
from conductor.gateway.timeout import TimeoutGateway

__all__ = [
    "COMMANDS",
    "NO_REQUEST_COMMANDS",
    "ProcessGateway",
    "RemoteCommandGateway",
    "TimeoutGateway",
    "coerce_result",
    "is_app_result",
    "to_app_error",
]
