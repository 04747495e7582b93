from __future__ import annotations

import numpy as np
from loguru import logger

from .config import EvolutionConfig
from .envs import make_environment
from .evaluation import CancelFn, FitnessEvaluator, ProgressFn, generation_seed
from .genome import Genome, create_initial_genome
from .innovation import InnovationTracker
from .species import SpeciesManager

HISTORY_LIMIT = 500


def pick_by_fitness(genomes: list[Genome], rng: np.random.Generator) -> Genome:
    """Roulette-wheel pick over non-negative fitness; uniform when all are zero."""
    weights = np.array([max(0.0, g.fitness) for g in genomes], dtype=float)
    total = float(weights.sum())
    if total <= 0:
        return genomes[rng.integers(len(genomes))]
    return genomes[int(rng.choice(len(genomes), p=weights / total))]


class Population:
    """All genomes and species of one run, advanced one generation at a time."""

    def __init__(
        self,
        cfg: EvolutionConfig,
        evaluator: FitnessEvaluator | None = None,
        input_count: int | None = None,
        output_count: int | None = None,
    ):
        self.cfg = cfg
        self.evaluator = evaluator if evaluator is not None else FitnessEvaluator(workers=cfg.workers)
        self._io_override = (input_count, output_count)
        self.rng = np.random.default_rng(cfg.seed)
        self._initialise()

    def _initialise(self) -> None:
        cfg = self.cfg
        input_count, output_count = self._io_override
        if input_count is None or output_count is None:
            env = make_environment(cfg.environment, cfg.max_steps_per_eval)
            input_count, output_count = env.input_count, env.output_count
        self.input_count = input_count
        self.output_count = output_count

        self.tracker = InnovationTracker()
        self.tracker.reserve_node_ids(input_count + output_count)
        self.species_mgr = SpeciesManager(cfg.compatibility_threshold, cfg.max_stale_generations)

        self.genomes: list[Genome] = [
            create_initial_genome(
                i,
                input_count,
                output_count,
                self.tracker,
                self.rng,
                activation=cfg.activation,
                allow_recurrent=cfg.allow_recurrent,
            )
            for i in range(cfg.population_size)
        ]
        self.next_genome_id = cfg.population_size
        self.generation = 0
        self.history: list[dict[str, float]] = []
        self.last_evaluated: list[Genome] = []
        logger.info(
            f"[Population] Initialised {len(self.genomes)} genomes for '{cfg.environment}' "
            f"({input_count} inputs, {output_count} outputs)"
        )

    def _next_id(self) -> int:
        gid = self.next_genome_id
        self.next_genome_id += 1
        return gid

    def update_config(self, cfg: EvolutionConfig) -> None:
        prev = self.cfg
        self.cfg = cfg
        self.species_mgr.threshold = cfg.compatibility_threshold
        self.species_mgr.max_stale_generations = cfg.max_stale_generations

        if cfg.workers != prev.workers:
            self.evaluator.close()
            self.evaluator.workers = cfg.workers

        if cfg.population_size != prev.population_size or cfg.environment != prev.environment:
            if cfg.environment != prev.environment:
                self._io_override = (None, None)
            logger.info("[Population] Population size or environment changed; rebuilding")
            self._initialise()
            return

        if cfg.activation != prev.activation:
            for genome in [*self.genomes, *self.last_evaluated]:
                genome.activation = cfg.activation

    # ------------------------------------------------------------------
    # Generation step
    # ------------------------------------------------------------------

    def step(self, on_progress: ProgressFn | None = None, should_cancel: CancelFn | None = None) -> dict[str, float]:
        """Evaluate, speciate, reproduce and mutate; returns the new history row.

        Nothing is modified until every evaluation has finished, so a
        cancelled step leaves the population as it was.
        """
        seed = generation_seed(self.cfg, self.generation)
        scores = self.evaluator.evaluate_all(
            self.genomes, self.cfg, seed, on_progress=on_progress, should_cancel=should_cancel
        )
        for genome, score in zip(self.genomes, scores):
            genome.fitness = score

        self.species_mgr.speciate(self.genomes, self.rng)
        self.species_mgr.share_fitness(self.genomes)
        self.species_mgr.remove_stagnant(self.best_genome())

        self.last_evaluated = sorted((g.clone() for g in self.genomes), key=lambda g: g.fitness, reverse=True)
        record = self._summarise_generation()

        self.genomes = self._reproduce()
        self._append_history(record)
        self.generation += 1
        return record

    def _reproduce(self) -> list[Genome]:
        cfg = self.cfg
        pop_by_id = {g.genome_id: g for g in self.genomes}
        species_members: dict[int, list[Genome]] = {
            sid: sorted((pop_by_id[gid] for gid in sp.members), key=lambda g: g.fitness, reverse=True)
            for sid, sp in self.species_mgr.species.items()
        }
        quota = self.species_mgr.offspring_quota(self.genomes, cfg.population_size)

        new_population: list[Genome] = []
        for sid, members in species_members.items():
            n_offspring = quota.get(sid, 0)
            elite_n = min(cfg.elitism, len(members), n_offspring)
            for elite in members[:elite_n]:
                child = elite.clone(new_id=self._next_id())
                child.reset_scores()
                child.activation = cfg.activation
                new_population.append(child)

            parent_cut = max(2, int(len(members) * cfg.survival_rate))
            parent_pool = members[:parent_cut]
            for _ in range(n_offspring - elite_n):
                child = self._breed(sid, parent_pool, species_members)
                self._mutate(child)
                new_population.append(child)

        while len(new_population) < cfg.population_size:
            child = self.best_genome().clone(new_id=self._next_id())
            child.reset_scores()
            self._mutate(child)
            new_population.append(child)

        return new_population[: cfg.population_size]

    def _breed(self, sid: int, pool: list[Genome], species_members: dict[int, list[Genome]]) -> Genome:
        cfg = self.cfg
        if len(pool) > 1 and self.rng.random() < cfg.crossover_rate:
            first = pick_by_fitness(pool, self.rng)
            second = None
            if self.rng.random() < cfg.inter_species_mate_rate:
                second = self._pick_from_other_species(sid, species_members)
            if second is None:
                second = pick_by_fitness(pool, self.rng)
            fitter, other = (first, second) if first.fitness >= second.fitness else (second, first)
            child = Genome.crossover(fitter, other, self.rng, child_id=self._next_id())
        else:
            child = pick_by_fitness(pool, self.rng).clone(new_id=self._next_id())
        child.reset_scores()
        child.activation = cfg.activation
        return child

    def _pick_from_other_species(self, sid: int, species_members: dict[int, list[Genome]]) -> Genome | None:
        others = [members for other_sid, members in species_members.items() if other_sid != sid and members]
        if not others:
            return None
        members = others[self.rng.integers(len(others))]
        pool = members[: max(1, int(len(members) * self.cfg.survival_rate))]
        return pick_by_fitness(pool, self.rng)

    def _mutate(self, child: Genome) -> None:
        cfg = self.cfg
        if self.rng.random() < cfg.weight_mutation_rate:
            child.mutate_weights(self.rng)
        if self.rng.random() < cfg.add_connection_rate:
            child.mutate_add_connection(self.tracker, self.rng, allow_recurrent=cfg.allow_recurrent)
        if self.rng.random() < cfg.add_node_rate:
            child.mutate_add_node(self.tracker, self.rng)

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def best_genome(self) -> Genome:
        return max(self.genomes, key=lambda g: g.fitness)

    def display_genomes(self) -> list[Genome]:
        """Most recently scored genomes, falling back to the unscored ones."""
        return self.last_evaluated or self.genomes

    def display_best(self) -> Genome | None:
        source = self.display_genomes()
        return max(source, key=lambda g: g.fitness) if source else None

    def find_genome(self, genome_id: int) -> Genome | None:
        for genome in [*self.last_evaluated, *self.genomes]:
            if genome.genome_id == genome_id:
                return genome
        return None

    def _summarise_generation(self) -> dict[str, float]:
        fitness = np.array([g.fitness for g in self.genomes], dtype=float)
        return {
            "gen": self.generation,
            "best": float(np.max(fitness)),
            "avg": float(np.mean(fitness)),
            "worst": float(np.min(fitness)),
            "species": len(self.species_mgr.species),
            "nodes": sum(len(g.nodes) for g in self.genomes),
            "conns": sum(g.complexity()[1] for g in self.genomes),
            "populationSize": len(self.genomes),
        }

    def _append_history(self, record: dict[str, float]) -> None:
        self.history.append(record)
        if len(self.history) > HISTORY_LIMIT:
            self.history = self.history[-HISTORY_LIMIT:]

        logger.info(
            f"[Population] gen {self.generation:04d} "
            f"best={record['best']:.3f} avg={record['avg']:.3f} "
            f"species={record['species']} conns={record['conns']}"
        )

    def stats(self) -> dict[str, float]:
        if self.history:
            return dict(self.history[-1])
        return {
            "gen": self.generation,
            "best": 0.0,
            "avg": 0.0,
            "worst": 0.0,
            "species": len(self.species_mgr.species),
            "nodes": 0,
            "conns": 0,
            "populationSize": len(self.genomes),
        }
