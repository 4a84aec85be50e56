"""Drive an engine with a simulated learner and print the resulting progress.

Usage:
    python scripts/simulate_learner.py --questions 300 --accuracy 0.85
    python scripts/simulate_learner.py --config engine.json --bulk-promotion

This script is deterministic for a given --seed.
"""

from __future__ import annotations

import argparse
import json

from fluency.config import EngineConfig, load_engine_config
from fluency.simulation import simulate_learner


def _parse_args() -> argparse.Namespace:
    p = argparse.ArgumentParser(description=__doc__, formatter_class=argparse.RawDescriptionHelpFormatter)
    p.add_argument("--questions", type=int, default=200)
    p.add_argument("--accuracy", type=float, default=0.8)
    p.add_argument("--seed", type=int, default=0)
    p.add_argument("--config", default=None, help="Engine config JSON (defaults to $FLUENCY_CONFIG_PATH)")
    p.add_argument("--bulk-promotion", action="store_true", help="Enable coverage bulk promotion")
    return p.parse_args()


def main() -> None:
    args = _parse_args()
    config: EngineConfig = load_engine_config(args.config)
    if args.bulk_promotion:
        config = config.model_copy(
            update={"bulk_promotion": config.bulk_promotion.model_copy(update={"enabled": True})}
        )

    result = simulate_learner(questions=args.questions, accuracy=args.accuracy, seed=args.seed, config=config)

    print(
        f"answered={result.answered} correct={result.correct} retries={result.retries} "
        f"elapsed={result.elapsed_seconds / 3600:.1f}h"
    )
    for name, n in sorted(result.event_counts.items()):
        print(f"  {name}: {n}")
    print(json.dumps(result.summary.model_dump(mode="json"), indent=2))


if __name__ == "__main__":
    main()
