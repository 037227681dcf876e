"""PHD2 remote-control client."""

__version__ = "0.1.0"
