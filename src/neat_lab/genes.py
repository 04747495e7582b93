from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class NodeKind(str, Enum):
    INPUT = "input"
    HIDDEN = "hidden"
    OUTPUT = "output"


# Tie-break rank used when ordering nodes for evaluation.
KIND_RANK = {NodeKind.INPUT: 0, NodeKind.HIDDEN: 1, NodeKind.OUTPUT: 2}


@dataclass
class NodeGene:
    node_id: int
    kind: NodeKind
    bias: float = 0.0


@dataclass
class ConnectionGene:
    innovation: int
    src: int
    dst: int
    weight: float
    enabled: bool = True
