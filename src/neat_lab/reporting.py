from __future__ import annotations

import csv
import json
from pathlib import Path
from typing import Any


class RunRecorder:
    """Writes the artifacts of a headless run from the snapshots it is fed."""

    def __init__(self, out_dir: Path, generations_total: int):
        self.out_dir = Path(out_dir)
        self.generations_total = generations_total
        self.species_sizes: list[dict[int, int]] = []
        self.last_snapshot: dict[str, Any] | None = None
        self.progress_path = self.out_dir / "progress.json"
        self.out_dir.mkdir(parents=True, exist_ok=True)

    def record(self, snapshot: dict[str, Any]) -> None:
        self.last_snapshot = snapshot
        self.species_sizes.append({sp["id"]: len(sp["members"]) for sp in snapshot["species"]})
        # Rewritten every generation so a long run can be followed from outside.
        self.write_progress(status=f"completed_generation_{snapshot['generation'] - 1}")

    def write_progress(self, status: str) -> None:
        history = self.last_snapshot["history"] if self.last_snapshot else []
        progress = {
            "generation_completed": len(self.species_sizes),
            "generations_total": self.generations_total,
            "status": status,
            "out_dir": str(self.out_dir),
            "best_fitness": history[-1]["best"] if history else None,
            "mean_fitness": history[-1]["avg"] if history else None,
        }
        write_json(progress, self.progress_path)

    def finalize(self) -> dict[str, Path]:
        snapshot = self.last_snapshot or {"history": [], "best": None}
        artifacts = {
            "history_csv": self.out_dir / "history.csv",
            "species_csv": self.out_dir / "species_sizes.csv",
            "snapshot_json": self.out_dir / "snapshot.json",
            "progress_json": self.progress_path,
        }
        write_history_csv(snapshot["history"], artifacts["history_csv"])
        write_species_csv(self.species_sizes, artifacts["species_csv"])
        write_json(snapshot, artifacts["snapshot_json"])
        if snapshot.get("best") is not None:
            artifacts["champion_json"] = self.out_dir / "champion_genome.json"
            write_json(snapshot["best"], artifacts["champion_json"])
        self.write_progress(status="finished")
        return artifacts


def write_history_csv(history: list[dict[str, Any]], path: Path) -> None:
    if not history:
        return
    fieldnames = list(history[0].keys())
    with path.open("w", newline="", encoding="utf-8") as f:
        writer = csv.DictWriter(f, fieldnames=fieldnames)
        writer.writeheader()
        for row in history:
            writer.writerow(row)


def write_species_csv(species_sizes: list[dict[int, int]], path: Path) -> None:
    all_species = sorted({sid for sizes in species_sizes for sid in sizes})
    fields = ["generation"] + [f"species_{sid}" for sid in all_species]
    with path.open("w", newline="", encoding="utf-8") as f:
        writer = csv.DictWriter(f, fieldnames=fields)
        writer.writeheader()
        for gen, sizes in enumerate(species_sizes):
            row = {"generation": gen}
            for sid in all_species:
                row[f"species_{sid}"] = sizes.get(sid, 0)
            writer.writerow(row)


def write_json(data: Any, path: Path) -> None:
    with path.open("w", encoding="utf-8") as f:
        json.dump(data, f, indent=2)
        f.flush()
