from phd2link.clients.exceptions import (
    PHD2CommandError,
    PHD2ConnectionError,
    PHD2Error,
    PHD2NotConnectedError,
    PHD2SettleError,
    PHD2TimeoutError,
)
from phd2link.clients.phd2_client import PHD2Client

__all__ = [
    "PHD2Client",
    "PHD2CommandError",
    "PHD2ConnectionError",
    "PHD2Error",
    "PHD2NotConnectedError",
    "PHD2SettleError",
    "PHD2TimeoutError",
]
