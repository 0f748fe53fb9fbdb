"""Per-call choice between the simulated and networked backends."""

from __future__ import annotations

from typing import Callable

from therapynotes.backends.base import Backend
from therapynotes.config import ClientSettings


class BackendSelector:
    """Resolves the active backend from the mode flag on every call.

    Nothing is cached, so flipping ``THERAPYNOTES_USE_MOCK_API`` between two
    operations routes the second one to the other backend.
    """

    def __init__(
        self,
        simulated: Backend,
        networked: Backend,
        settings: Callable[[], ClientSettings] = ClientSettings.from_env,
    ) -> None:
        self.simulated = simulated
        self.networked = networked
        self._settings = settings

    def settings(self) -> ClientSettings:
        return self._settings()

    def backend(self) -> Backend:
        return self.simulated if self._settings().use_mock_api else self.networked

    def narrative_backend(self) -> Backend:
        # Hybrid mode keeps simulated data but sends narratives to a real model.
        return self.simulated if self._settings().simulated_narrative else self.networked

    def mode(self) -> str:
        return self.backend().mode


__all__ = ["BackendSelector"]
