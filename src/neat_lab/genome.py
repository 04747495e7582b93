from __future__ import annotations

import copy
import heapq
from dataclasses import dataclass, field
from typing import Sequence

import numpy as np

from .activations import ACTIVATIONS, ActivationKind
from .genes import KIND_RANK, ConnectionGene, NodeGene, NodeKind
from .innovation import InnovationTracker

WEIGHT_PERTURB_CHANCE = 0.8
WEIGHT_PERTURB_POWER = 0.3
WEIGHT_INIT_RANGE = 2.0
WEIGHT_CLIP = 4.0
HIDDEN_BIAS_RANGE = 0.1

# Compatibility coefficients are fixed rather than configurable.
EXCESS_COEFF = 1.0
DISJOINT_COEFF = 1.0
WEIGHT_COEFF = 0.4
SIZE_NORMALISE_MIN = 20


def random_weight(rng: np.random.Generator) -> float:
    return float(rng.uniform(-WEIGHT_INIT_RANGE, WEIGHT_INIT_RANGE))


@dataclass
class Genome:
    genome_id: int
    nodes: dict[int, NodeGene]
    connections: list[ConnectionGene] = field(default_factory=list)
    fitness: float = 0.0
    adjusted_fitness: float = 0.0
    species_id: int | None = None
    activation: ActivationKind = ActivationKind.TANH

    @classmethod
    def minimal(
        cls,
        genome_id: int,
        input_count: int,
        output_count: int,
        activation: ActivationKind = ActivationKind.TANH,
    ) -> "Genome":
        """Build a genome holding only input and output nodes."""
        nodes: dict[int, NodeGene] = {}
        for nid in range(input_count):
            nodes[nid] = NodeGene(node_id=nid, kind=NodeKind.INPUT)
        for oid in range(output_count):
            nid = input_count + oid
            nodes[nid] = NodeGene(node_id=nid, kind=NodeKind.OUTPUT)
        return cls(genome_id=genome_id, nodes=nodes, activation=ActivationKind(activation))

    def clone(self, new_id: int | None = None) -> "Genome":
        return Genome(
            genome_id=self.genome_id if new_id is None else new_id,
            nodes=copy.deepcopy(self.nodes),
            connections=copy.deepcopy(self.connections),
            fitness=self.fitness,
            adjusted_fitness=self.adjusted_fitness,
            species_id=self.species_id,
            activation=self.activation,
        )

    def reset_scores(self) -> None:
        self.fitness = 0.0
        self.adjusted_fitness = 0.0
        self.species_id = None

    def to_dict(self) -> dict:
        """Full JSON-ready view with host-facing keys."""
        return {
            "id": self.genome_id,
            "fitness": float(self.fitness),
            "adjustedFitness": float(self.adjusted_fitness),
            "speciesId": self.species_id,
            "activation": self.activation.value,
            "nodes": [
                {"id": n.node_id, "type": n.kind.value, "bias": float(n.bias)}
                for n in sorted(self.nodes.values(), key=lambda n: n.node_id)
            ],
            "connections": [
                {
                    "fromNode": c.src,
                    "toNode": c.dst,
                    "weight": float(c.weight),
                    "enabled": bool(c.enabled),
                    "innovation": c.innovation,
                }
                for c in self.connections
            ],
        }

    def to_summary(self) -> dict:
        return {
            "id": self.genome_id,
            "fitness": float(self.fitness),
            "adjustedFitness": float(self.adjusted_fitness),
            "speciesId": self.species_id,
            "nodesCount": len(self.nodes),
            "connsCount": self.complexity()[1],
        }

    @property
    def input_ids(self) -> list[int]:
        return sorted(k for k, n in self.nodes.items() if n.kind == NodeKind.INPUT)

    @property
    def output_ids(self) -> list[int]:
        return sorted(k for k, n in self.nodes.items() if n.kind == NodeKind.OUTPUT)

    @property
    def hidden_ids(self) -> list[int]:
        return sorted(k for k, n in self.nodes.items() if n.kind == NodeKind.HIDDEN)

    def complexity(self) -> tuple[int, int]:
        enabled = sum(1 for c in self.connections if c.enabled)
        return len(self.hidden_ids), enabled

    def has_connection(self, src: int, dst: int) -> bool:
        return any(c.src == src and c.dst == dst for c in self.connections)

    def _enabled_adjacency(self) -> dict[int, list[int]]:
        adjacency: dict[int, list[int]] = {nid: [] for nid in self.nodes}
        for conn in self.connections:
            if conn.enabled and conn.src in adjacency and conn.dst in adjacency:
                adjacency[conn.src].append(conn.dst)
        return adjacency

    def reaches(self, start: int, target: int) -> bool:
        """True when ``target`` is reachable from ``start`` over enabled connections."""
        adjacency = self._enabled_adjacency()
        stack = [start]
        visited: set[int] = set()
        while stack:
            current = stack.pop()
            if current == target:
                return True
            if current in visited:
                continue
            visited.add(current)
            stack.extend(adjacency.get(current, ()))
        return False

    def introduces_cycle(self, src: int, dst: int) -> bool:
        return src == dst or self.reaches(dst, src)

    def _rank(self, nid: int) -> tuple[int, int]:
        return KIND_RANK[self.nodes[nid].kind], nid

    def topological_order(self) -> list[int]:
        """Order node ids so each node follows all of its enabled predecessors.

        Kahn's algorithm; among ready nodes inputs come first, then hidden,
        then outputs, each by id. When the enabled graph has a cycle the
        plain kind-then-id order is returned instead, which only approximates
        recurrent dynamics.
        """
        adjacency = self._enabled_adjacency()
        indegree = {nid: 0 for nid in self.nodes}
        for targets in adjacency.values():
            for dst in targets:
                indegree[dst] += 1

        ready = [self._rank(nid) for nid, deg in indegree.items() if deg == 0]
        heapq.heapify(ready)
        ordered: list[int] = []
        while ready:
            _, nid = heapq.heappop(ready)
            ordered.append(nid)
            for dst in adjacency[nid]:
                indegree[dst] -= 1
                if indegree[dst] == 0:
                    heapq.heappush(ready, self._rank(dst))

        if len(ordered) != len(self.nodes):
            return sorted(self.nodes, key=self._rank)
        return ordered

    def to_phenotype(self) -> "FeedForwardPhenotype":
        return FeedForwardPhenotype(self)

    def activate(self, inputs: Sequence[float]) -> list[float]:
        return self.to_phenotype().activate(inputs)

    def activate_detailed(self, inputs: Sequence[float]) -> tuple[list[float], dict[int, float]]:
        return self.to_phenotype().activate_detailed(inputs)

    def mutate_weights(self, rng: np.random.Generator) -> None:
        for conn in self.connections:
            if rng.random() < WEIGHT_PERTURB_CHANCE:
                conn.weight += float(rng.uniform(-1.0, 1.0)) * WEIGHT_PERTURB_POWER
            else:
                conn.weight = random_weight(rng)
            conn.weight = float(np.clip(conn.weight, -WEIGHT_CLIP, WEIGHT_CLIP))

    def mutate_add_connection(
        self,
        tracker: InnovationTracker,
        rng: np.random.Generator,
        max_attempts: int = 30,
        allow_recurrent: bool = False,
    ) -> bool:
        sources = sorted(nid for nid, n in self.nodes.items() if n.kind != NodeKind.OUTPUT)
        targets = sorted(nid for nid, n in self.nodes.items() if n.kind != NodeKind.INPUT)
        if not sources or not targets:
            return False

        for _ in range(max_attempts):
            src = sources[rng.integers(len(sources))]
            dst = targets[rng.integers(len(targets))]
            if src == dst or self.has_connection(src, dst):
                continue
            if not allow_recurrent and self.introduces_cycle(src, dst):
                continue
            self.connections.append(
                ConnectionGene(
                    innovation=tracker.get_connection_innovation(src, dst),
                    src=src,
                    dst=dst,
                    weight=random_weight(rng),
                    enabled=True,
                )
            )
            return True
        return False

    def mutate_add_node(self, tracker: InnovationTracker, rng: np.random.Generator) -> bool:
        enabled = [c for c in self.connections if c.enabled]
        if not enabled:
            return False

        old_conn = enabled[rng.integers(len(enabled))]
        old_conn.enabled = False

        new_node_id = tracker.new_node_id()
        if new_node_id in self.nodes:
            raise ValueError(f"Tracker issued node id {new_node_id} already present in genome {self.genome_id}")
        self.nodes[new_node_id] = NodeGene(
            node_id=new_node_id,
            kind=NodeKind.HIDDEN,
            bias=float(rng.uniform(-HIDDEN_BIAS_RANGE, HIDDEN_BIAS_RANGE)),
        )
        self.connections.append(
            ConnectionGene(
                innovation=tracker.get_connection_innovation(old_conn.src, new_node_id),
                src=old_conn.src,
                dst=new_node_id,
                weight=1.0,
                enabled=True,
            )
        )
        self.connections.append(
            ConnectionGene(
                innovation=tracker.get_connection_innovation(new_node_id, old_conn.dst),
                src=new_node_id,
                dst=old_conn.dst,
                weight=old_conn.weight,
                enabled=True,
            )
        )
        return True

    def compatibility(self, other: "Genome") -> float:
        a = sorted(self.connections, key=lambda c: c.innovation)
        b = sorted(other.connections, key=lambda c: c.innovation)

        i = j = 0
        matching = disjoint = 0
        weight_diff = 0.0
        while i < len(a) and j < len(b):
            if a[i].innovation == b[j].innovation:
                matching += 1
                weight_diff += abs(a[i].weight - b[j].weight)
                i += 1
                j += 1
            elif a[i].innovation < b[j].innovation:
                disjoint += 1
                i += 1
            else:
                disjoint += 1
                j += 1
        excess = (len(a) - i) + (len(b) - j)

        largest = max(len(a), len(b))
        n = largest if largest >= SIZE_NORMALISE_MIN else 1
        mean_weight_diff = weight_diff / matching if matching else 0.0
        return (EXCESS_COEFF * excess + DISJOINT_COEFF * disjoint) / max(n, 1) + WEIGHT_COEFF * mean_weight_diff

    @staticmethod
    def crossover(
        parent_a: "Genome",
        parent_b: "Genome",
        rng: np.random.Generator,
        child_id: int | None = None,
    ) -> "Genome":
        """Breed two genomes; ``parent_a`` is taken to be the fitter one.

        Matching genes come from either parent at random, disjoint and
        excess genes only from ``parent_a``.
        """
        a_innov = {c.innovation: c for c in parent_a.connections}
        b_innov = {c.innovation: c for c in parent_b.connections}

        child_conn: list[ConnectionGene] = []
        for innov in sorted(a_innov):
            gene = a_innov[innov]
            if innov in b_innov and rng.random() >= 0.5:
                gene = b_innov[innov]
            child_conn.append(copy.deepcopy(gene))

        node_ids: set[int] = set()
        for conn in child_conn:
            node_ids.add(conn.src)
            node_ids.add(conn.dst)
        for parent in (parent_a, parent_b):
            node_ids.update(nid for nid, n in parent.nodes.items() if n.kind != NodeKind.HIDDEN)

        child_nodes: dict[int, NodeGene] = {}
        for nid in sorted(node_ids):
            source = parent_a.nodes.get(nid) or parent_b.nodes.get(nid)
            if source is None:
                raise ValueError(f"Connection references node {nid} missing from both parents")
            child_nodes[nid] = copy.deepcopy(source)

        return Genome(
            genome_id=parent_a.genome_id if child_id is None else child_id,
            nodes=child_nodes,
            connections=child_conn,
            activation=parent_a.activation,
        )


class FeedForwardPhenotype:
    """A genome compiled into an evaluation plan for repeated activation."""

    def __init__(self, genome: Genome):
        self._input_ids = genome.input_ids
        self._output_ids = genome.output_ids
        self._activation = ACTIVATIONS[genome.activation]

        incoming: dict[int, list[tuple[int, float]]] = {nid: [] for nid in genome.nodes}
        for conn in genome.connections:
            if conn.enabled and conn.src in genome.nodes and conn.dst in incoming:
                incoming[conn.dst].append((conn.src, conn.weight))

        self._plan = [
            (nid, genome.nodes[nid].bias, incoming[nid])
            for nid in genome.topological_order()
            if genome.nodes[nid].kind != NodeKind.INPUT
        ]

    def activate_detailed(self, inputs: Sequence[float]) -> tuple[list[float], dict[int, float]]:
        values: dict[int, float] = {}
        for i, nid in enumerate(self._input_ids):
            values[nid] = float(inputs[i]) if i < len(inputs) else 0.0

        for nid, bias, sources in self._plan:
            total = bias
            for src, weight in sources:
                total += values.get(src, 0.0) * weight
            values[nid] = self._activation(total)

        return [values.get(nid, 0.0) for nid in self._output_ids], values

    def activate(self, inputs: Sequence[float]) -> list[float]:
        return self.activate_detailed(inputs)[0]


def create_initial_genome(
    genome_id: int,
    input_count: int,
    output_count: int,
    tracker: InnovationTracker,
    rng: np.random.Generator,
    activation: ActivationKind = ActivationKind.TANH,
    allow_recurrent: bool = False,
) -> Genome:
    genome = Genome.minimal(genome_id, input_count, output_count, activation)
    genome.mutate_add_connection(tracker, rng, allow_recurrent=allow_recurrent)
    if rng.random() < 0.25:
        genome.mutate_add_connection(tracker, rng, allow_recurrent=allow_recurrent)
    return genome
