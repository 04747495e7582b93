"""
Unit tests for speciation, fitness sharing, stagnation and offspring quotas.
"""

import numpy as np
import pytest

from neat_lab.genes import ConnectionGene
from neat_lab.genome import Genome
from neat_lab.species import Species, SpeciesManager


def _genome(gid, weight, species_id=None, fitness=0.0):
    genome = Genome.minimal(gid, 2, 1)
    genome.connections.append(ConnectionGene(0, 0, 2, weight))
    genome.species_id = species_id
    genome.fitness = fitness
    return genome


class TestSpeciate:
    """Assignment of genomes to species."""

    def test_distance_equal_to_threshold_joins(self, rng):
        a, b = _genome(0, 1.0), _genome(1, -1.0)
        manager = SpeciesManager(threshold=0.8, max_stale_generations=15)

        manager.speciate([a, b], rng)

        assert a.species_id == b.species_id
        assert len(manager.species) == 1

    def test_distance_above_threshold_splits(self, rng):
        a, b = _genome(0, 1.0), _genome(1, -1.0)
        manager = SpeciesManager(threshold=0.79, max_stale_generations=15)

        manager.speciate([a, b], rng)

        assert a.species_id != b.species_id
        assert len(manager.species) == 2

    def test_zero_threshold_groups_identical_genomes(self, rng):
        population = [_genome(i, 0.5) for i in range(4)]
        manager = SpeciesManager(threshold=0.0, max_stale_generations=15)

        manager.speciate(population, rng)

        assert len(manager.species) == 1
        assert manager.species[0].members == [0, 1, 2, 3]

    def test_distinct_genomes_split_at_zero_and_merge_at_large_threshold(self, rng):
        population = [_genome(i, float(w)) for i, w in enumerate(np.linspace(-2.0, 2.0, 10))]

        SpeciesManager(threshold=0.0, max_stale_generations=15).speciate(population, rng)
        assert len({g.species_id for g in population}) == 10

        SpeciesManager(threshold=1e6, max_stale_generations=15).speciate(population, rng)
        assert {g.species_id for g in population} == {0}

    def test_every_genome_in_exactly_one_species(self, rng):
        population = [_genome(i, float(w)) for i, w in enumerate(np.linspace(-4, 4, 12))]
        manager = SpeciesManager(threshold=1.0, max_stale_generations=15)

        mapping = manager.speciate(population, rng)

        members = [gid for sp in manager.species.values() for gid in sp.members]
        assert sorted(members) == list(range(12))
        for genome in population:
            assert mapping[genome.genome_id] == genome.species_id

    def test_empty_species_are_dropped(self, rng):
        manager = SpeciesManager(threshold=0.5, max_stale_generations=15)
        manager.speciate([_genome(0, 4.0), _genome(1, -4.0)], rng)
        assert len(manager.species) == 2

        manager.speciate([_genome(2, 4.0), _genome(3, 3.9)], rng)

        assert list(manager.species) == [0]

    def test_representative_is_a_copy(self, rng):
        genome = _genome(0, 1.0)
        manager = SpeciesManager(threshold=3.0, max_stale_generations=15)
        manager.speciate([genome], rng)

        genome.connections[0].weight = -3.0

        assert manager.species[0].representative.connections[0].weight == 1.0


class TestFitnessSharing:
    """Adjusted fitness and staleness bookkeeping."""

    def test_adjusted_fitness_divides_by_species_size(self, rng):
        population = [_genome(i, 0.0, fitness=f) for i, f in enumerate([3.0, 6.0, 9.0])]
        manager = SpeciesManager(threshold=3.0, max_stale_generations=15)
        manager.speciate(population, rng)

        manager.share_fitness(population)

        assert [g.adjusted_fitness for g in population] == pytest.approx([1.0, 2.0, 3.0])

    def test_staleness_counts_generations_without_improvement(self):
        species = Species(species_id=0, representative=_genome(0, 0.0))

        species.update_staleness([1.0])
        species.update_staleness([1.0])
        species.update_staleness([0.5])
        assert species.stale_generations == 2

        species.update_staleness([1.5])
        assert species.stale_generations == 0
        assert species.best_fitness_ever == 1.5


class TestStagnation:
    """Removal of species that stopped improving."""

    def test_stagnant_species_removed_but_best_protected(self):
        manager = SpeciesManager(threshold=3.0, max_stale_generations=3)
        for sid in range(3):
            manager.species[sid] = Species(sid, _genome(sid, 0.0), members=[sid], stale_generations=3)
        manager.species[2].stale_generations = 2
        best = _genome(0, 0.0, species_id=0, fitness=10.0)

        removed = manager.remove_stagnant(best)

        assert removed == [1]
        assert sorted(manager.species) == [0, 2]

    def test_nothing_removed_below_limit(self):
        manager = SpeciesManager(threshold=3.0, max_stale_generations=15)
        manager.species[0] = Species(0, _genome(0, 0.0), members=[0], stale_generations=14)

        assert manager.remove_stagnant(None) == []


class TestOffspringQuota:
    """Splitting the next generation between species."""

    def _manager_with(self, fitness_by_species):
        manager = SpeciesManager(threshold=3.0, max_stale_generations=15)
        population = []
        gid = 0
        for sid, values in enumerate(fitness_by_species):
            members = []
            for value in values:
                genome = _genome(gid, 0.0, species_id=sid, fitness=value)
                genome.adjusted_fitness = value / len(values)
                population.append(genome)
                members.append(gid)
                gid += 1
            manager.species[sid] = Species(sid, population[members[0]], members=members)
        return manager, population

    def test_quota_sums_to_total(self):
        rng = np.random.default_rng(5)
        for _ in range(50):
            n_species = int(rng.integers(1, 8))
            fitness = [list(rng.uniform(0, 10, size=int(rng.integers(1, 6)))) for _ in range(n_species)]
            manager, population = self._manager_with(fitness)
            total = int(rng.integers(n_species, 200))

            quota = manager.offspring_quota(population, total)

            assert sum(quota.values()) == total
            assert all(v >= 1 for v in quota.values())

    def test_quota_follows_adjusted_fitness(self):
        manager, population = self._manager_with([[9.0], [3.0]])

        assert manager.offspring_quota(population, 20) == {0: 15, 1: 5}

    def test_zero_fitness_splits_evenly(self):
        manager, population = self._manager_with([[0.0, 0.0], [0.0], [0.0]])

        quota = manager.offspring_quota(population, 9)

        assert quota == {0: 3, 1: 3, 2: 3}

    def test_weak_species_keep_one_slot(self):
        manager, population = self._manager_with([[100.0], [0.0]])

        assert manager.offspring_quota(population, 10) == {0: 9, 1: 1}
