"""
Unit tests for fitness evaluation and the built-in environments.
"""

import math
import threading

import numpy as np
import pytest

from neat_lab.config import EvolutionConfig
from neat_lab.envs import FlappyBirdEnv, TargetSeekerEnv, make_environment
from neat_lab.evaluation import FitnessEvaluator, GenerationCancelled, evaluate, generation_seed
from neat_lab.genome import Genome, create_initial_genome
from neat_lab.innovation import InnovationTracker


class ConstantNetwork:
    def __init__(self, value):
        self.value = value

    def activate(self, inputs):
        return [self.value, self.value]


def _genomes(n, input_count=5, output_count=1, seed=0):
    rng = np.random.default_rng(seed)
    tracker = InnovationTracker()
    tracker.reserve_node_ids(input_count + output_count)
    return [create_initial_genome(i, input_count, output_count, tracker, rng) for i in range(n)]


class TestEnvironments:
    """Headless tasks."""

    @pytest.mark.parametrize(
        "name,inputs,outputs",
        [("flappy_bird", 5, 1), ("target_seeker", 7, 2), ("obstacle_avoid", 10, 2), ("multi_target", 9, 2)],
    )
    def test_shapes(self, name, inputs, outputs):
        env = make_environment(name, 400)

        assert env.input_count == inputs
        assert env.output_count == outputs

    def test_unknown_environment(self):
        with pytest.raises(ValueError):
            make_environment("pong", 400)

    @pytest.mark.parametrize("name", ["flappy_bird", "target_seeker", "obstacle_avoid", "multi_target"])
    def test_same_seed_same_score(self, name):
        env = make_environment(name, 300)
        network = ConstantNetwork(0.6)

        assert env.evaluate(network, 17) == env.evaluate(network, 17)

    @pytest.mark.parametrize("name", ["flappy_bird", "target_seeker", "obstacle_avoid", "multi_target"])
    @pytest.mark.parametrize("value", [math.nan, math.inf, -math.inf])
    def test_non_finite_outputs_give_finite_score(self, name, value):
        score = make_environment(name, 300).evaluate(ConstantNetwork(value), 3)

        assert math.isfinite(score)
        assert score >= 0.0

    def test_nan_output_behaves_like_no_flap(self):
        env = FlappyBirdEnv(max_steps=300)

        assert env.evaluate(ConstantNetwork(math.nan), 5) == env.evaluate(ConstantNetwork(0.0), 5)

    def test_target_seeker_rejects_unknown_mode(self):
        with pytest.raises(ValueError):
            TargetSeekerEnv(mode="maze")


class TestEvaluate:
    """The pure scoring function."""

    def test_deterministic_for_genome_config_seed(self):
        genome = _genomes(1)[0]
        cfg = EvolutionConfig(max_steps_per_eval=300)

        assert evaluate(genome, cfg, 99) == evaluate(genome.clone(), cfg, 99)

    def test_generation_seed_varies_with_generation(self):
        cfg = EvolutionConfig(seed=4)

        assert generation_seed(cfg, 0) != generation_seed(cfg, 1)
        assert generation_seed(cfg, 3) == generation_seed(EvolutionConfig(seed=4), 3)


class TestFitnessEvaluator:
    """Fan-out over the worker pool."""

    @pytest.mark.parametrize("workers", [1, 4])
    def test_results_line_up_with_genomes(self, workers):
        genomes = _genomes(20)
        evaluator = FitnessEvaluator(lambda g, c, s: float(g.genome_id), workers=workers)
        try:
            scores = evaluator.evaluate_all(genomes, EvolutionConfig(), 0)
        finally:
            evaluator.close()

        assert scores == [float(g.genome_id) for g in genomes]

    @pytest.mark.parametrize("bad", [math.nan, math.inf, -math.inf])
    def test_non_finite_fitness_becomes_zero(self, bad):
        evaluator = FitnessEvaluator(lambda g, c, s: bad, workers=1)

        assert evaluator.evaluate_all(_genomes(3), EvolutionConfig(), 0) == [0.0, 0.0, 0.0]

    def test_progress_reaches_one(self):
        seen = []
        evaluator = FitnessEvaluator(lambda g, c, s: 1.0, workers=1)

        evaluator.evaluate_all(_genomes(20), EvolutionConfig(), 0, on_progress=seen.append)

        assert seen == [pytest.approx(8 / 20), pytest.approx(16 / 20), 1.0]

    def test_cancel_raises(self):
        calls = []

        def slow(genome, config, seed):
            calls.append(genome.genome_id)
            return 1.0

        evaluator = FitnessEvaluator(slow, workers=1)
        with pytest.raises(GenerationCancelled):
            evaluator.evaluate_all(_genomes(10), EvolutionConfig(), 0, should_cancel=lambda: len(calls) >= 3)

        assert len(calls) == 3

    def test_pool_uses_worker_threads(self):
        names = set()

        def record(genome, config, seed):
            names.add(threading.current_thread().name)
            return 0.0

        evaluator = FitnessEvaluator(record, workers=2)
        try:
            evaluator.evaluate_all(_genomes(6), EvolutionConfig(), 0)
        finally:
            evaluator.close()

        assert all(name.startswith("neat-eval") for name in names)

    def test_genome_is_not_mutated(self):
        genome = _genomes(1)[0]
        before = [(c.innovation, c.weight, c.enabled) for c in genome.connections]

        FitnessEvaluator(workers=1).evaluate_all([genome], EvolutionConfig(max_steps_per_eval=200), 1)

        assert [(c.innovation, c.weight, c.enabled) for c in genome.connections] == before


def test_minimal_genome_evaluates():
    genome = Genome.minimal(0, 5, 1)

    assert evaluate(genome, EvolutionConfig(max_steps_per_eval=200), 0) >= 0.0
