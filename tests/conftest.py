"""Shared fixtures for the engine tests."""

import numpy as np
import pytest

from neat_lab.config import EvolutionConfig
from neat_lab.evaluation import FitnessEvaluator
from neat_lab.genome import Genome
from neat_lab.innovation import InnovationTracker
from neat_lab.population import Population


def constant_fitness(genome, config, seed):
    return 1.0


@pytest.fixture
def rng():
    return np.random.default_rng(1234)


@pytest.fixture
def tracker():
    """Tracker with ids 0..2 reserved for a 2-input, 1-output layout."""
    t = InnovationTracker()
    t.reserve_node_ids(3)
    return t


@pytest.fixture
def minimal_genome():
    return Genome.minimal(0, input_count=2, output_count=1)


@pytest.fixture
def small_config():
    # Built directly so the population can go below the host-facing minimum.
    return EvolutionConfig(population_size=10, workers=1, seed=7)


@pytest.fixture
def small_population(small_config):
    evaluator = FitnessEvaluator(constant_fitness, workers=1)
    return Population(small_config, evaluator, input_count=2, output_count=1)
