from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class InnovationTracker:
    """Hands out innovation numbers and hidden node ids for one population.

    A tracker is owned by a single population; independent populations (and
    tests) each build their own so numbering never leaks between them.
    """

    next_innovation: int = 0
    next_node_id: int = 0
    conn_innov: dict[tuple[int, int], int] = field(default_factory=dict)

    def reserve_node_ids(self, start_id: int) -> None:
        self.next_node_id = max(self.next_node_id, int(start_id))

    def get_connection_innovation(self, src: int, dst: int) -> int:
        key = (src, dst)
        if key not in self.conn_innov:
            self.conn_innov[key] = self.next_innovation
            self.next_innovation += 1
        return self.conn_innov[key]

    def new_node_id(self) -> int:
        node_id = self.next_node_id
        self.next_node_id += 1
        return node_id
