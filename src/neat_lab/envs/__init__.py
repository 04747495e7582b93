"""Headless tasks used to score genomes."""

from __future__ import annotations

from .base import Environment, Network
from .flappy_bird import FlappyBirdEnv
from .target_seeker import TargetSeekerEnv

__all__ = ["Environment", "Network", "FlappyBirdEnv", "TargetSeekerEnv", "make_environment"]


def make_environment(name: str, max_steps: int) -> Environment:
    if name == "flappy_bird":
        return FlappyBirdEnv(max_steps=max_steps)
    if name in ("target_seeker", "obstacle_avoid", "multi_target"):
        return TargetSeekerEnv(mode=name, max_steps=max_steps)
    raise ValueError(f"Unknown environment: {name}")
