from __future__ import annotations

import math
from dataclasses import dataclass

import numpy as np

from .base import Environment, Network, trial_rng


@dataclass(frozen=True)
class Rect:
    x: float
    y: float
    w: float
    h: float

    def contains(self, px: float, py: float, radius: float = 0.0) -> bool:
        return (
            px + radius >= self.x
            and px - radius <= self.x + self.w
            and py + radius >= self.y
            and py - radius <= self.y + self.h
        )

    def ray_hit(self, ox: float, oy: float, dx: float, dy: float, max_dist: float) -> float | None:
        """Distance along the ray to the rectangle (slab test), or None on a miss."""
        t_min, t_max = 0.0, max_dist
        for origin, direction, low, high in ((ox, dx, self.x, self.x + self.w), (oy, dy, self.y, self.y + self.h)):
            if abs(direction) < 1e-6:
                if origin < low or origin > high:
                    return None
                continue
            t1 = (low - origin) / direction
            t2 = (high - origin) / direction
            t_min = max(t_min, min(t1, t2))
            t_max = min(t_max, max(t1, t2))
        if t_max < 0 or t_min > t_max:
            return None
        return t_min


DEFAULT_OBSTACLES = (Rect(220, 110, 26, 190), Rect(430, 210, 26, 190))

MODE_INPUTS = {"target_seeker": 7, "obstacle_avoid": 10, "multi_target": 9}


class TargetSeekerEnv(Environment):
    """A point agent steering its velocity towards a target.

    ``obstacle_avoid`` adds walls sensed by five ray casts and penalises
    collisions; ``multi_target`` chains three targets in order. Two outputs
    give the x/y thrust.
    """

    output_count = 2

    RAY_LENGTH = 170.0
    RAY_ANGLES = (0.0, -math.pi / 3, -math.pi / 6, math.pi / 6, math.pi / 3)
    REACH_RADIUS = 20.0
    AGENT_RADIUS = 7.0
    COLLISION_PENALTY = 5.0
    THRUST = 1.5
    DRAG = 0.9

    def __init__(
        self,
        mode: str = "target_seeker",
        max_steps: int = 400,
        width: float = 760.0,
        height: float = 460.0,
        trials: int = 3,
    ):
        if mode not in MODE_INPUTS:
            raise ValueError(f"Unsupported mode: {mode}")
        super().__init__(max(40, int(max_steps)))
        self.name = mode
        self.mode = mode
        self.input_count = MODE_INPUTS[mode]
        self.width = float(width)
        self.height = float(height)
        self.trials = trials
        self.obstacles = DEFAULT_OBSTACLES if mode == "obstacle_avoid" else ()

    def _random_point(self, rng: np.random.Generator, padding: float = 50.0) -> tuple[float, float]:
        return (
            padding + float(rng.random()) * max(1.0, self.width - padding * 2),
            padding + float(rng.random()) * max(1.0, self.height - padding * 2),
        )

    def _targets(self, rng: np.random.Generator) -> list[tuple[float, float]]:
        if self.mode == "multi_target":
            return [self._random_point(rng, 60.0) for _ in range(3)]
        return [self._random_point(rng)]

    def _rays(self, x: float, y: float, heading: float) -> list[float]:
        readings = []
        for offset in self.RAY_ANGLES:
            dx, dy = math.cos(heading + offset), math.sin(heading + offset)
            nearest = self.RAY_LENGTH
            for rect in self.obstacles:
                hit = rect.ray_hit(x, y, dx, dy, self.RAY_LENGTH)
                if hit is not None:
                    nearest = min(nearest, hit)
            readings.append(nearest / self.RAY_LENGTH)
        return readings

    def observe(
        self,
        x: float,
        y: float,
        vx: float,
        vy: float,
        target: tuple[float, float],
        target_index: int,
        target_count: int,
    ) -> list[float]:
        dx, dy = target[0] - x, target[1] - y
        dist = max(1e-6, math.hypot(dx, dy))
        diagonal = max(1.0, math.hypot(self.width, self.height))
        base = [
            dx / self.width,
            dy / self.height,
            dist / diagonal,
            vx / 10.0,
            vy / 10.0,
            (x / self.width) * 2 - 1,
            (y / self.height) * 2 - 1,
        ]
        if self.mode == "obstacle_avoid":
            heading = math.atan2(vy, vx or 1e-6)
            inputs = base[:5] + self._rays(x, y, heading)
        elif self.mode == "multi_target":
            count = max(1, target_count)
            inputs = base + [target_index / max(1, count - 1), (count - target_index) / count]
        else:
            inputs = base
        return (inputs + [0.0] * self.input_count)[: self.input_count]

    def _run_trial(self, network: Network, rng: np.random.Generator) -> float:
        x, y = self._random_point(rng)
        vx = vy = 0.0
        fitness = 0.0
        penalty = 0.0
        targets = self._targets(rng)
        index = 0
        target = targets[index]
        initial = max(1.0, math.dist((x, y), target))

        for step in range(self.max_steps):
            prev_x, prev_y = x, y
            out_x, out_y = self.read_outputs(network, self.observe(x, y, vx, vy, target, index, len(targets)))

            vx = (vx + out_x * self.THRUST) * self.DRAG
            vy = (vy + out_y * self.THRUST) * self.DRAG
            x += vx
            y += vy
            if x < 0 or x > self.width:
                vx *= -0.5
            if y < 0 or y > self.height:
                vy *= -0.5
            x = float(np.clip(x, 0.0, self.width))
            y = float(np.clip(y, 0.0, self.height))

            if any(rect.contains(x, y, self.AGENT_RADIUS) for rect in self.obstacles):
                x, y = prev_x, prev_y
                vx *= -0.4
                vy *= -0.4
                penalty += self.COLLISION_PENALTY

            distance = math.dist((x, y), target)
            fitness += (initial - distance) / max(initial, 1.0)

            if distance < self.REACH_RADIUS:
                fitness += (self.max_steps - step) * 2
                if index < len(targets) - 1:
                    index += 1
                    target = targets[index]
                    initial = max(1.0, math.dist((x, y), target))
                else:
                    break

        return max(0.0, fitness - penalty)

    def evaluate(self, network: Network, seed: int) -> float:
        total = sum(self._run_trial(network, trial_rng(seed, trial)) for trial in range(self.trials))
        return max(0.0, total / self.trials)
