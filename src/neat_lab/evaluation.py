"""Fitness evaluation of genomes against the configured environment.

`evaluate` is the pure scoring function: a genome, a config and a seed always
map to the same fitness. `FitnessEvaluator` fans it out over a thread pool for
a whole generation and acts as the barrier before speciation.

The built-in environments are pure Python, so under the GIL the pool mostly
overlaps bookkeeping rather than running simulations in parallel. It pays off
for evaluation functions that release the GIL, such as numpy-heavy tasks.
``workers=1`` evaluates inline on the calling thread.
"""

from __future__ import annotations

import math
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from typing import Callable, Sequence

from loguru import logger

from .config import EvolutionConfig
from .envs import make_environment
from .genome import Genome

EvaluateFn = Callable[[Genome, EvolutionConfig, int], float]
ProgressFn = Callable[[float], None]
CancelFn = Callable[[], bool]


class GenerationCancelled(Exception):
    """Raised when a generation is abandoned before all evaluations finished."""


def evaluate(genome: Genome, config: EvolutionConfig, seed: int) -> float:
    env = make_environment(config.environment, config.max_steps_per_eval)
    return env.evaluate(genome.to_phenotype(), seed)


def generation_seed(config: EvolutionConfig, generation: int) -> int:
    # Every genome of a generation faces the same courses.
    return (config.seed + 99_991 * (generation + 1)) & 0xFFFFFFFF


class FitnessEvaluator:
    def __init__(self, evaluate_fn: EvaluateFn = evaluate, workers: int = 4):
        self.evaluate_fn = evaluate_fn
        self.workers = max(1, int(workers))
        self._executor: ThreadPoolExecutor | None = None

    def _get_executor(self) -> ThreadPoolExecutor:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=self.workers, thread_name_prefix="neat-eval")
            logger.debug(f"[FitnessEvaluator] Created ThreadPoolExecutor with {self.workers} workers")
        return self._executor

    def close(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=True, cancel_futures=True)
            self._executor = None

    def score(self, genome: Genome, config: EvolutionConfig, seed: int) -> float:
        value = float(self.evaluate_fn(genome, config, seed))
        if not math.isfinite(value):
            logger.debug(f"[FitnessEvaluator] Genome {genome.genome_id} scored {value}; using 0")
            return 0.0
        return value

    def evaluate_all(
        self,
        genomes: Sequence[Genome],
        config: EvolutionConfig,
        seed: int,
        on_progress: ProgressFn | None = None,
        should_cancel: CancelFn | None = None,
    ) -> list[float]:
        """Score every genome; results line up with ``genomes``.

        ``should_cancel`` is polled after each finished evaluation; when it
        returns True the outstanding work is dropped and
        :class:`GenerationCancelled` is raised.
        """
        total = len(genomes)
        results = [0.0] * total
        if total == 0:
            return results

        if self.workers == 1:
            for i, genome in enumerate(genomes):
                results[i] = self.score(genome, config, seed)
                self._after_each(i + 1, total, on_progress, should_cancel, ())
            return results

        executor = self._get_executor()
        futures: dict[Future, int] = {
            executor.submit(self.score, genome, config, seed): i for i, genome in enumerate(genomes)
        }
        for done, future in enumerate(as_completed(futures), start=1):
            results[futures[future]] = future.result()
            self._after_each(done, total, on_progress, should_cancel, futures)
        return results

    @staticmethod
    def _after_each(done, total, on_progress, should_cancel, pending) -> None:
        if on_progress is not None and (done % 8 == 0 or done == total):
            on_progress(done / total)
        if should_cancel is not None and should_cancel():
            for future in pending:
                future.cancel()
            raise GenerationCancelled(f"cancelled after {done}/{total} evaluations")
