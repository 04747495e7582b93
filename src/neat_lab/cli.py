from __future__ import annotations

import argparse
import datetime as dt
import json
import sys
from pathlib import Path
from queue import Empty

from loguru import logger

from .controller import EvolutionController
from .protocol import EventType
from .reporting import RunRecorder

EVENT_TIMEOUT = 600.0


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Run NEAT headlessly on one of the built-in environments")
    p.add_argument("--generations", type=int, default=50)
    p.add_argument("--config", type=str, default=None, help="JSON file of host-style config keys")
    p.add_argument("--pop-size", type=int, default=None)
    p.add_argument("--environment", type=str, default=None)
    p.add_argument("--seed", type=int, default=None)
    p.add_argument("--workers", type=int, default=None)
    p.add_argument("--out-root", type=str, default="artifacts")
    p.add_argument("--log-level", type=str, default="INFO")
    return p.parse_args(argv)


def build_payload(args: argparse.Namespace) -> dict:
    payload: dict = {}
    if args.config:
        with Path(args.config).open("r", encoding="utf-8") as f:
            payload.update(json.load(f))
    overrides = {
        "populationSize": args.pop_size,
        "environment": args.environment,
        "seed": args.seed,
        "workers": args.workers,
    }
    payload.update({k: v for k, v in overrides.items() if v is not None})
    return payload


def _await(controller: EvolutionController, wanted: set[EventType], recorder: RunRecorder | None = None):
    while True:
        event = controller.next_event(timeout=EVENT_TIMEOUT)
        if event.type is EventType.PROGRESS:
            logger.debug(f"[cli] gen {event.payload['generation']} progress {event.payload['value']:.0%}")
            continue
        if event.type is EventType.ERROR:
            raise RuntimeError(event.payload.get("message", "engine error"))
        if event.type in wanted:
            return event


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    logger.remove()
    logger.add(sys.stderr, level=args.log_level.upper())

    payload = build_payload(args)
    ts = dt.datetime.now().strftime("%Y%m%d_%H%M%S")
    env_name = payload.get("environment", "flappy_bird")
    out_dir = Path(args.out_root).resolve() / f"{env_name}_{ts}"
    recorder = RunRecorder(out_dir, generations_total=args.generations)

    with EvolutionController() as controller:
        try:
            controller.send({"type": "INIT", "payload": payload})
            inited = _await(controller, {EventType.INITED})
            for message in inited.payload["snapshot"]["config"]["warnings"]:
                logger.warning(f"[cli] {message}")

            for _ in range(max(0, args.generations)):
                controller.send({"type": "STEP"})
                event = _await(controller, {EventType.GENERATION_COMPLETE})
                recorder.record(event.payload["snapshot"])
        except (RuntimeError, Empty) as exc:
            logger.error(f"[cli] Run aborted: {exc or 'timed out waiting for the engine'}")
            recorder.write_progress(status="failed")
            return 1

    artifacts = recorder.finalize()
    print(f"Run complete: {out_dir}")
    for name, p in sorted(artifacts.items()):
        print(f"{name}: {p}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
