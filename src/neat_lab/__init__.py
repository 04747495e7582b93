"""NEAT neuroevolution engine with a message-driven background controller."""

from __future__ import annotations

from typing import TYPE_CHECKING

from .config import EvolutionConfig

if TYPE_CHECKING:
    from .controller import EvolutionController
    from .population import Population

__all__ = ["EvolutionConfig", "EvolutionController", "Population"]


def __getattr__(name: str):
    if name == "EvolutionController":
        from .controller import EvolutionController as _EvolutionController

        return _EvolutionController
    if name == "Population":
        from .population import Population as _Population

        return _Population
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
