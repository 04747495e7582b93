from __future__ import annotations

from enum import Enum
from typing import Callable

import numpy as np


class ActivationKind(str, Enum):
    TANH = "tanh"
    SIGMOID = "sigmoid"
    RELU = "relu"
    SIN = "sin"


def _tanh(x: float) -> float:
    return float(np.tanh(x))


def _sigmoid(x: float) -> float:
    # Same curve as 1 / (1 + exp(-x)) without overflowing for large |x|.
    return float(0.5 * (1.0 + np.tanh(0.5 * x)))


def _relu(x: float) -> float:
    return float(max(0.0, x))


def _sin(x: float) -> float:
    return float(np.sin(x))


ACTIVATIONS: dict[ActivationKind, Callable[[float], float]] = {
    ActivationKind.TANH: _tanh,
    ActivationKind.SIGMOID: _sigmoid,
    ActivationKind.RELU: _relu,
    ActivationKind.SIN: _sin,
}


def apply_activation(kind: ActivationKind, x: float) -> float:
    return ACTIVATIONS[kind](x)
