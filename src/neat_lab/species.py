from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Sequence

import numpy as np
from loguru import logger

from .genome import Genome


@dataclass
class Species:
    species_id: int
    representative: Genome
    members: list[int] = field(default_factory=list)
    best_fitness_ever: float = -math.inf
    stale_generations: int = 0

    def update_staleness(self, member_fitness: Sequence[float]) -> None:
        if not member_fitness:
            return
        current_best = max(member_fitness)
        if current_best > self.best_fitness_ever:
            self.best_fitness_ever = current_best
            self.stale_generations = 0
        else:
            self.stale_generations += 1


class SpeciesManager:
    """Clusters genomes by compatibility distance and splits the offspring budget.

    Species are kept in creation order, which is also the order genomes are
    matched against representatives.
    """

    def __init__(self, threshold: float, max_stale_generations: int):
        self.threshold = threshold
        self.max_stale_generations = max_stale_generations
        self.next_species_id = 0
        self.species: dict[int, Species] = {}

    def speciate(self, population: list[Genome], rng: np.random.Generator) -> dict[int, int]:
        for sp in self.species.values():
            sp.members = []

        genome_to_species: dict[int, int] = {}
        for genome in population:
            match = None
            for sp in self.species.values():
                if genome.compatibility(sp.representative) <= self.threshold:
                    match = sp
                    break

            if match is None:
                match = Species(species_id=self.next_species_id, representative=genome.clone())
                self.next_species_id += 1
                self.species[match.species_id] = match
            match.members.append(genome.genome_id)
            genome.species_id = match.species_id
            genome_to_species[genome.genome_id] = match.species_id

        # Drop empty species and refresh representatives.
        pop_by_id = {g.genome_id: g for g in population}
        alive: dict[int, Species] = {}
        for sid, sp in self.species.items():
            if not sp.members:
                continue
            rep_gid = sp.members[rng.integers(len(sp.members))]
            sp.representative = pop_by_id[rep_gid].clone()
            alive[sid] = sp
        self.species = alive
        return genome_to_species

    def share_fitness(self, population: list[Genome]) -> None:
        """Explicit fitness sharing: each member's fitness divided by its species size."""
        pop_by_id = {g.genome_id: g for g in population}
        for sp in self.species.values():
            members = [pop_by_id[gid] for gid in sp.members]
            size = max(1, len(members))
            for genome in members:
                genome.adjusted_fitness = genome.fitness / size
            sp.update_staleness([g.fitness for g in members])

    def remove_stagnant(self, best: Genome | None) -> list[int]:
        """Drop species stale for too long; the species holding ``best`` always survives."""
        protected = best.species_id if best is not None else None
        removed = [
            sid
            for sid, sp in self.species.items()
            if sp.stale_generations >= self.max_stale_generations and sid != protected
        ]
        for sid in removed:
            del self.species[sid]
        if removed:
            logger.info(f"[SpeciesManager] Removed stagnant species {removed}")
        return removed

    def offspring_quota(self, population: list[Genome], total: int) -> dict[int, int]:
        """Offspring per species, proportional to summed adjusted fitness.

        Every species gets at least one slot and the quotas add up to
        exactly ``total`` (largest remainder rounding).
        """
        if not self.species:
            return {}

        pop_by_id = {g.genome_id: g for g in population}
        scores = {
            sid: sum(max(0.0, pop_by_id[gid].adjusted_fitness) for gid in sp.members)
            for sid, sp in self.species.items()
        }
        score_sum = sum(scores.values())
        if score_sum > 0:
            raw = {sid: score / score_sum * total for sid, score in scores.items()}
        else:
            raw = {sid: total / len(scores) for sid in scores}

        spawn = {sid: max(1, int(math.floor(value))) for sid, value in raw.items()}
        by_remainder = sorted(raw, key=lambda sid: raw[sid] - math.floor(raw[sid]), reverse=True)

        n_now = sum(spawn.values())
        i = 0
        while n_now < total:
            spawn[by_remainder[i % len(by_remainder)]] += 1
            n_now += 1
            i += 1

        while n_now > total:
            candidates = [sid for sid in spawn if spawn[sid] > 1]
            if not candidates:
                break
            sid = max(candidates, key=lambda s: (spawn[s] - raw[s], spawn[s]))
            spawn[sid] -= 1
            n_now -= 1

        return spawn
