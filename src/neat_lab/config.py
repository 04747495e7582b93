from __future__ import annotations

import math
from dataclasses import dataclass, field, fields
from typing import Any, Mapping

from loguru import logger

from .activations import ActivationKind

ENVIRONMENT_NAMES = ("flappy_bird", "target_seeker", "obstacle_avoid", "multi_target")


@dataclass(frozen=True)
class FieldSpec:
    attr: str
    kind: type
    low: float | None = None
    high: float | None = None
    choices: tuple[str, ...] = ()


# Host-facing (camelCase) key -> how to read and bound it.
FIELD_SPECS: dict[str, FieldSpec] = {
    "populationSize": FieldSpec("population_size", int, 20, 500),
    "compatibilityThreshold": FieldSpec("compatibility_threshold", float, 0.5, 6.0),
    "weightMutationRate": FieldSpec("weight_mutation_rate", float, 0.0, 1.0),
    "addConnectionRate": FieldSpec("add_connection_rate", float, 0.0, 0.5),
    "addNodeRate": FieldSpec("add_node_rate", float, 0.0, 0.1),
    "crossoverRate": FieldSpec("crossover_rate", float, 0.0, 1.0),
    "interSpeciesMateRate": FieldSpec("inter_species_mate_rate", float, 0.0, 0.3),
    "survivalRate": FieldSpec("survival_rate", float, 0.1, 0.5),
    "allowRecurrent": FieldSpec("allow_recurrent", bool),
    "activation": FieldSpec("activation", str, choices=tuple(k.value for k in ActivationKind)),
    "maxStaleGenerations": FieldSpec("max_stale_generations", int, 3, 60),
    "maxStepsPerEval": FieldSpec("max_steps_per_eval", int, 160, 3000),
    "environment": FieldSpec("environment", str, choices=ENVIRONMENT_NAMES),
    "elitism": FieldSpec("elitism", int, 0, 5),
    "seed": FieldSpec("seed", int, 0, 2**32 - 1),
    "workers": FieldSpec("workers", int, 1, 32),
}

ALIASES = {
    "popSize": "populationSize",
    "compatThreshold": "compatibilityThreshold",
}

_ATTR_TO_KEY = {spec.attr: key for key, spec in FIELD_SPECS.items()}
_TRUE_STRINGS = {"1", "true", "yes", "on"}
_FALSE_STRINGS = {"0", "false", "no", "off", ""}


@dataclass
class EvolutionConfig:
    population_size: int = 150
    compatibility_threshold: float = 3.0
    weight_mutation_rate: float = 0.8
    add_connection_rate: float = 0.05
    add_node_rate: float = 0.03
    crossover_rate: float = 0.75
    inter_species_mate_rate: float = 0.001
    survival_rate: float = 0.25
    allow_recurrent: bool = False
    activation: ActivationKind = ActivationKind.TANH
    max_stale_generations: int = 15
    max_steps_per_eval: int = 1000
    environment: str = "flappy_bird"
    elitism: int = 1
    seed: int = 0
    workers: int = 4
    warnings: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any] | None = None) -> "EvolutionConfig":
        """Build a config from host-style keys, starting from defaults."""
        return cls().merged(raw or {})

    def merged(self, raw: Mapping[str, Any]) -> "EvolutionConfig":
        """Return a new config with ``raw`` applied on top of this one.

        Out-of-range numbers are clamped to the nearest bound and unknown
        enum values fall back to the current value; every adjustment is
        recorded in ``warnings`` of the returned config.
        """
        values = {f.name: getattr(self, f.name) for f in fields(self) if f.name != "warnings"}
        warnings: list[str] = []

        for raw_key, raw_value in raw.items():
            key = ALIASES.get(raw_key, raw_key)
            if key not in FIELD_SPECS and key in _ATTR_TO_KEY:
                key = _ATTR_TO_KEY[key]
            spec = FIELD_SPECS.get(key)
            if spec is None:
                warnings.append(f"Ignored unknown config key '{raw_key}'")
                continue
            values[spec.attr] = _coerce(key, spec, raw_value, values[spec.attr], warnings)

        values["activation"] = ActivationKind(values["activation"])
        for message in warnings:
            logger.warning(f"[EvolutionConfig] {message}")
        return EvolutionConfig(**values, warnings=warnings)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {}
        for key, spec in FIELD_SPECS.items():
            value = getattr(self, spec.attr)
            data[key] = value.value if isinstance(value, ActivationKind) else value
        data["warnings"] = list(self.warnings)
        return data


def _coerce(key: str, spec: FieldSpec, raw_value: Any, current: Any, warnings: list[str]) -> Any:
    if spec.kind is bool:
        if isinstance(raw_value, str):
            lowered = raw_value.strip().lower()
            if lowered in _TRUE_STRINGS:
                return True
            if lowered in _FALSE_STRINGS:
                return False
            warnings.append(f"{key}: could not read {raw_value!r} as a boolean; kept {current}")
            return current
        return bool(raw_value)

    if spec.choices:
        value = raw_value.value if isinstance(raw_value, ActivationKind) else str(raw_value).strip().lower()
        if value not in spec.choices:
            fallback = current.value if isinstance(current, ActivationKind) else current
            warnings.append(f"{key}: unknown value {raw_value!r}; kept '{fallback}'")
            return current
        return value

    try:
        number = float(raw_value)
    except (TypeError, ValueError):
        warnings.append(f"{key}: could not read {raw_value!r} as a number; kept {current}")
        return current
    if not math.isfinite(number):
        warnings.append(f"{key}: non-finite value {raw_value!r}; kept {current}")
        return current

    if spec.kind is int:
        number = math.floor(number)
    clamped = min(max(number, spec.low), spec.high)
    if clamped != number:
        warnings.append(f"{key}: {raw_value!r} is outside [{spec.low}, {spec.high}]; clamped to {clamped}")
    return int(clamped) if spec.kind is int else float(clamped)
