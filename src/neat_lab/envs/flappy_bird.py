from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from .base import Environment, Network, trial_rng


@dataclass
class Pipe:
    x: float
    gap_top: float
    gap: float
    passed: bool = False


@dataclass
class Difficulty:
    ramp: float
    gravity: float
    jump: float
    pipe_speed: float
    pipe_gap: float


@dataclass
class Episode:
    y: float
    vy: float
    pipes: list[Pipe]
    rng: np.random.Generator
    frame: int = 0
    score: float = 0.0
    alive: bool = True


class FlappyBirdEnv(Environment):
    """Side-scrolling bird that has to flap through a stream of pipe gaps.

    Observations: bird height, vertical speed, distance to the next pipe and
    the top/bottom of its gap. One output; a value above 0.5 flaps.
    """

    name = "flappy_bird"
    input_count = 5
    output_count = 1

    BIRD_X = 86.0
    BASE_GRAVITY = 0.4
    GRAVITY_BOOST = 0.08
    EXTRA_GRAVITY_BOOST = 0.07
    BASE_JUMP_FORCE = -6.8
    JUMP_NERF = 0.35
    EXTRA_JUMP_NERF = 0.26
    BASE_PIPE_SPEED = 2.9
    MAX_PIPE_SPEED = 5.4
    EXTRA_PIPE_SPEED_BOOST = 1.7
    PIPE_WIDTH = 56.0
    BASE_PIPE_GAP = 132.0
    MIN_PIPE_GAP = 88.0
    HARD_MIN_PIPE_GAP = 66.0
    EXTRA_GAP_SHRINK = 16.0
    PIPE_INTERVAL = 170.0
    MAX_PIPES = 5
    PASS_REWARD = 12.0

    def __init__(self, max_steps: int = 1000, width: float = 800.0, height: float = 500.0, trials: int = 4):
        super().__init__(max_steps)
        self.width = float(width)
        self.height = float(height)
        self.trials = int(np.clip(trials, 2, 8))

    def difficulty(self, frame: int) -> Difficulty:
        base = float(np.clip(frame / max(1400.0, self.max_steps * 1.4), 0.0, 1.0))
        long = float(np.clip(frame / max(5200.0, self.max_steps * 4.2), 0.0, 1.0))
        gap = np.clip(
            self.BASE_PIPE_GAP - (self.BASE_PIPE_GAP - self.MIN_PIPE_GAP) * base - self.EXTRA_GAP_SHRINK * long,
            self.HARD_MIN_PIPE_GAP,
            self.BASE_PIPE_GAP,
        )
        return Difficulty(
            ramp=base + long * 0.9,
            gravity=self.BASE_GRAVITY + self.GRAVITY_BOOST * base + self.EXTRA_GRAVITY_BOOST * long,
            jump=self.BASE_JUMP_FORCE + self.JUMP_NERF * base + self.EXTRA_JUMP_NERF * long,
            pipe_speed=self.BASE_PIPE_SPEED
            + (self.MAX_PIPE_SPEED - self.BASE_PIPE_SPEED) * base
            + self.EXTRA_PIPE_SPEED_BOOST * long,
            pipe_gap=float(round(gap)),
        )

    def _next_gap_top(self, previous: float | None, gap: float, rng: np.random.Generator) -> float:
        low = 60.0
        high = max(low + 1.0, self.height - 60.0 - gap)
        if previous is None:
            return float(rng.uniform(low, high))
        # Drift from the previous gap so courses stay flyable.
        drift = max(30.0, gap * 0.38)
        return float(np.clip(previous + rng.uniform(-drift, drift), low, high))

    def _new_pipe(self, after_x: float, gap: float, rng: np.random.Generator, previous: float | None) -> Pipe:
        gap = float(np.clip(round(gap), self.HARD_MIN_PIPE_GAP, self.BASE_PIPE_GAP))
        return Pipe(x=after_x + self.PIPE_INTERVAL, gap_top=self._next_gap_top(previous, gap, rng), gap=gap)

    def new_episode(self, rng: np.random.Generator) -> Episode:
        difficulty = self.difficulty(0)
        pipes: list[Pipe] = []
        cursor = self.width - self.PIPE_INTERVAL * 0.2
        previous = None
        for _ in range(self.MAX_PIPES):
            pipe = self._new_pipe(cursor, difficulty.pipe_gap, rng, previous)
            pipes.append(pipe)
            cursor = pipe.x
            previous = pipe.gap_top
        y = self.height * 0.5 + float(rng.uniform(-self.height * 0.08, self.height * 0.08))
        return Episode(y=y, vy=0.0, pipes=pipes, rng=rng)

    def _next_pipe(self, pipes: list[Pipe]) -> Pipe:
        for pipe in pipes:
            if pipe.x + self.PIPE_WIDTH * 0.5 > self.BIRD_X:
                return pipe
        return pipes[0]

    def _collides(self, y: float, pipe: Pipe) -> bool:
        if y < 0 or y > self.height:
            return True
        if abs(pipe.x - self.BIRD_X) >= self.PIPE_WIDTH * 0.5:
            return False
        return y < pipe.gap_top or y > pipe.gap_top + pipe.gap

    def observe(self, episode: Episode, pipe: Pipe) -> list[float]:
        return [
            episode.y / self.height,
            episode.vy / 20.0,
            (pipe.x - self.BIRD_X) / self.width,
            pipe.gap_top / self.height,
            (pipe.gap_top + pipe.gap) / self.height,
        ]

    def step(self, network: Network, episode: Episode) -> bool:
        """Advance one tick; returns True once the episode is over."""
        if not episode.alive:
            return True

        difficulty = self.difficulty(episode.frame)
        pipe = self._next_pipe(episode.pipes)
        (flap,) = self.read_outputs(network, self.observe(episode, pipe))
        if flap > 0.5:
            episode.vy = difficulty.jump

        episode.vy += difficulty.gravity
        episode.y += episode.vy
        for item in episode.pipes:
            item.x -= difficulty.pipe_speed

        if episode.pipes[0].x < -self.PIPE_WIDTH:
            last = episode.pipes[-1]
            episode.pipes.pop(0)
            episode.pipes.append(self._new_pipe(last.x, difficulty.pipe_gap, episode.rng, last.gap_top))

        upcoming = self._next_pipe(episode.pipes)
        if self._collides(episode.y, upcoming):
            episode.alive = False
            return True

        if pipe.x + self.PIPE_WIDTH * 0.5 < self.BIRD_X and not pipe.passed:
            pipe.passed = True
            episode.score += self.PASS_REWARD

        gap_center = upcoming.gap_top + upcoming.gap * 0.5
        center_reward = 1.0 - min(1.0, abs(episode.y - gap_center) / (upcoming.gap * 0.5))
        episode.score += 0.1 + max(0.0, center_reward) * 0.06 + difficulty.ramp * 0.03
        episode.frame += 1

        if episode.frame >= self.max_steps:
            episode.alive = False
            return True
        return False

    def evaluate(self, network: Network, seed: int) -> float:
        total = 0.0
        for trial in range(self.trials):
            episode = self.new_episode(trial_rng(seed, trial))
            while not self.step(network, episode):
                pass
            total += episode.score
        return max(0.0, total / self.trials)
