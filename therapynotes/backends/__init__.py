"""Backend implementations behind the shared operation surface."""

from therapynotes.backends.base import Backend, Payload
from therapynotes.backends.networked import NetworkedBackend
from therapynotes.backends.simulated import SimulatedBackend

__all__ = ["Backend", "NetworkedBackend", "Payload", "SimulatedBackend"]
