from __future__ import annotations

import math
from abc import ABC, abstractmethod
from typing import Protocol, Sequence

import numpy as np


class Network(Protocol):
    def activate(self, inputs: Sequence[float]) -> list[float]: ...


def trial_rng(seed: int, trial: int) -> np.random.Generator:
    """Independent, reproducible stream for one trial of one evaluation."""
    return np.random.default_rng([int(seed) & 0xFFFFFFFF, trial])


def finite_or(value: float, default: float = 0.0) -> float:
    value = float(value)
    return value if math.isfinite(value) else default


class Environment(ABC):
    """Headless task that scores a network with a scalar reward.

    ``evaluate`` must be deterministic for a given seed and must treat
    non-finite network outputs as the task's no-op action.
    """

    name = "base"
    input_count = 0
    output_count = 0

    def __init__(self, max_steps: int = 1000):
        self.max_steps = int(max_steps)

    def read_outputs(self, network: Network, inputs: Sequence[float]) -> list[float]:
        outputs = list(network.activate(inputs))
        outputs += [0.0] * (self.output_count - len(outputs))
        return [finite_or(v) for v in outputs[: self.output_count]]

    @abstractmethod
    def evaluate(self, network: Network, seed: int) -> float:
        raise NotImplementedError
