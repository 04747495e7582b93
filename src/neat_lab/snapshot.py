"""Plain, JSON-ready views of engine state handed across the host boundary.

Every function here builds fresh dicts and lists from primitive values, so a
snapshot never shares a reference with the live population.
"""

from __future__ import annotations

from typing import Any

from .config import EvolutionConfig
from .population import Population
from .species import Species

VISUAL_GENOME_BUDGET = 48


def species_summary(species: Species) -> dict[str, Any]:
    best = species.best_fitness_ever
    return {
        "id": species.species_id,
        "members": list(species.members),
        "representativeId": species.representative.genome_id,
        "bestFitness": float(best) if best != float("-inf") else 0.0,
        "staleGenerations": species.stale_generations,
    }


def build_snapshot(population: Population | None, config: EvolutionConfig, running: bool) -> dict[str, Any]:
    if population is None:
        return {
            "generation": 0,
            "population": [],
            "populationGenomes": [],
            "species": [],
            "best": None,
            "history": [],
            "stats": None,
            "config": config.to_dict(),
            "running": running,
        }

    visible = sorted(population.display_genomes(), key=lambda g: g.fitness, reverse=True)
    best = population.display_best()
    return {
        "generation": population.generation,
        "population": [g.to_summary() for g in visible],
        "populationGenomes": [g.to_dict() for g in visible[:VISUAL_GENOME_BUDGET]],
        "species": [species_summary(sp) for sp in population.species_mgr.species.values()],
        "best": best.to_dict() if best is not None else None,
        "history": [dict(row) for row in population.history],
        "stats": population.stats(),
        "config": config.to_dict(),
        "running": running,
    }
