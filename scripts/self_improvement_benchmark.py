#!/usr/bin/env python3
"""Multi-model self-improvement benchmark.

Runs the continual engine for several epochs of curriculum tasks per small
model and reports how the resolve rate evolves:
- per-epoch metrics (resolve rate, confidence, patterns, curriculum, temperature),
- an improvement curve (resolve rate per epoch),
- rankings by final resolve rate, improvement and efficiency.

Usage:
  python scripts/self_improvement_benchmark.py --quick
  python scripts/self_improvement_benchmark.py --epochs 10 --tasks-per-epoch 100 --output report.json
  python scripts/self_improvement_benchmark.py --embedding-dim 128 --checkpoint-dir ./checkpoints
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from continual_engine.config import EngineConfig  # noqa: E402
from continual_engine.curriculum import generate_curriculum_tasks  # noqa: E402
from continual_engine.orchestrator import Orchestrator  # noqa: E402

logger = logging.getLogger("self_improvement_benchmark")

REPORT_VERSION = "2.0.0"


@dataclass(frozen=True)
class ModelSpec:
    """Benchmark model: size drives adapter rank and base capability."""

    name: str
    parameters_b: float
    embedding_dim: int
    provider: str = "unknown"


SMALL_MODELS: List[ModelSpec] = [
    ModelSpec("Qwen2.5-Coder-1.5B", 1.5, 1536, "alibaba"),
    ModelSpec("DeepSeek-Coder-1.3B", 1.3, 2048, "deepseek"),
    ModelSpec("StarCoder2-3B", 3.0, 2560, "bigcode"),
    ModelSpec("Phi-3-mini-4k", 3.8, 3072, "microsoft"),
    ModelSpec("Qwen2.5-Coder-7B", 7.0, 3584, "alibaba"),
    ModelSpec("CodeLlama-7B", 7.0, 4096, "meta"),
]


@dataclass(frozen=True)
class BenchmarkConfig:
    models: Sequence[ModelSpec]
    epochs: int = 7
    tasks_per_epoch: int = 50
    embedding_dim: Optional[int] = None
    seed: Optional[int] = 42
    checkpoint_dir: Optional[Path] = None


def _round4(value: float) -> float:
    return round(value, 4)


def _last_resolve_rate(result: Dict[str, Any]) -> float:
    return result["epochs"][-1]["resolve_rate"] if result["epochs"] else 0.0


def _improvement(result: Dict[str, Any]) -> float:
    curve = result["improvement_curve"]
    return curve[-1] - curve[0] if curve else 0.0


def _efficiency(result: Dict[str, Any]) -> float:
    return _last_resolve_rate(result) / result["model"]["parameters_b"]


def run_model(model: ModelSpec, config: BenchmarkConfig) -> Dict[str, Any]:
    """Run every epoch for one model and summarize it."""
    engine_config = EngineConfig(
        model_name=model.name,
        embedding_dim=config.embedding_dim or model.embedding_dim,
        model_capacity=model.parameters_b,
        seed=config.seed,
    )
    engine = Orchestrator(engine_config)
    logger.info(f"{model.name} ({model.parameters_b}B) | adapter rank {engine.adapter.rank}")

    epochs: List[Dict[str, Any]] = []
    curve: List[float] = []
    for _ in range(config.epochs):
        tasks = generate_curriculum_tasks(config.tasks_per_epoch, engine.curriculum_level, rng=engine.rng)
        metrics = engine.run_epoch(tasks)
        pattern_matches = sum(1 for r in engine.last_results if r.pattern_matched)

        epochs.append(
            {
                "epoch": metrics.epoch,
                "resolve_rate": _round4(metrics.resolve_rate),
                "avg_confidence": _round4(metrics.avg_confidence),
                "avg_latency_ms": _round4(metrics.avg_latency_ms),
                "patterns_learned": metrics.patterns_learned,
                "pattern_matches": pattern_matches,
                "curriculum_level": metrics.curriculum_level,
                "temperature": _round4(metrics.temperature),
                "tasks_protected": metrics.tasks_protected,
                "effective_learning_rate": metrics.effective_learning_rate,
            }
        )
        curve.append(_round4(metrics.resolve_rate))

    checkpoint_path = None
    if config.checkpoint_dir is not None:
        checkpoint_path = engine.save_checkpoint(str(config.checkpoint_dir))

    return {
        "model": asdict(model),
        "adapter_rank": engine.adapter.rank,
        "embedding_dim": engine.dim,
        "epochs": epochs,
        "improvement_curve": curve,
        "final_checkpoint": checkpoint_path,
    }


def rank_models(model_results: List[Dict[str, Any]]) -> Dict[str, List[str]]:
    def names(key) -> List[str]:
        return [r["model"]["name"] for r in sorted(model_results, key=key, reverse=True)]

    return {
        "by_resolve_rate": names(_last_resolve_rate),
        "by_improvement": names(_improvement),
        "by_efficiency": names(_efficiency),
    }


def run_benchmark(config: BenchmarkConfig) -> Dict[str, Any]:
    """Benchmark every configured model and build the report."""
    if config.epochs < 1 or config.tasks_per_epoch < 1:
        raise ValueError("epochs and tasks_per_epoch must be positive")

    model_results = [run_model(model, config) for model in config.models]

    return {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": REPORT_VERSION,
        "config": {
            "models": [m.name for m in config.models],
            "epochs": config.epochs,
            "tasks_per_epoch": config.tasks_per_epoch,
            "embedding_dim": config.embedding_dim,
            "seed": config.seed,
        },
        "model_results": model_results,
        "rankings": rank_models(model_results),
    }


def select_models(names: Optional[Sequence[str]], quick: bool) -> List[ModelSpec]:
    if names:
        by_name = {m.name: m for m in SMALL_MODELS}
        unknown = [n for n in names if n not in by_name]
        if unknown:
            raise ValueError(f"Unknown model(s): {', '.join(unknown)}")
        return [by_name[n] for n in names]
    return SMALL_MODELS[:3] if quick else list(SMALL_MODELS)


def main() -> int:
    parser = argparse.ArgumentParser(description="Continual engine self-improvement benchmark")
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument("--quick", action="store_true", help="3 models, 5 epochs, 30 tasks per epoch")
    mode.add_argument("--full", action="store_true", help="10 epochs, 100 tasks per epoch")
    parser.add_argument("--models", nargs="+", help="Model names to benchmark (default: registry)")
    parser.add_argument("--epochs", type=int, help="Override epoch count")
    parser.add_argument("--tasks-per-epoch", type=int, help="Override tasks per epoch")
    parser.add_argument("--embedding-dim", type=int, help="Use one embedding dim for every model")
    parser.add_argument("--seed", type=int, default=42, help="Random seed")
    parser.add_argument("--checkpoint-dir", type=Path, help="Save a final checkpoint per model here")
    parser.add_argument("--output", type=Path, help="Optional report output path")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    default_epochs, default_tasks = (5, 30) if args.quick else (10, 100) if args.full else (7, 50)
    try:
        config = BenchmarkConfig(
            models=select_models(args.models, args.quick),
            epochs=args.epochs if args.epochs is not None else default_epochs,
            tasks_per_epoch=args.tasks_per_epoch if args.tasks_per_epoch is not None else default_tasks,
            embedding_dim=args.embedding_dim,
            seed=args.seed,
            checkpoint_dir=args.checkpoint_dir,
        )
        report = run_benchmark(config)
    except ValueError as e:
        logger.error(str(e))
        return 2

    rendered = json.dumps(report, indent=2)
    print(rendered)

    if args.output:
        args.output.parent.mkdir(parents=True, exist_ok=True)
        args.output.write_text(rendered + "\n", encoding="utf-8")

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
