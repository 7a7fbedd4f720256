#!/usr/bin/env python3
"""
Continual Engine CLI

Command-line interface for the continual engine service.

Usage:
    python continual_engine_cli.py run-epoch [--synthetic-count 50] [--tasks-file tasks.json]
    python continual_engine_cli.py status
    python continual_engine_cli.py similar 0.1,0.2,... [--top-k 3]
    python continual_engine_cli.py save-checkpoint
    python continual_engine_cli.py list-checkpoints
    python continual_engine_cli.py restore [--checkpoint-id ID]
    python continual_engine_cli.py metrics
    python continual_engine_cli.py health
"""

import argparse
import asyncio
import httpx
import json
import sys
from typing import List, Optional


BASE_URL = "http://localhost:8003"


def parse_vector(raw: str) -> List[float]:
    """Parse a comma-separated vector ("0.1,0.2,...")."""
    try:
        return [float(v) for v in raw.split(",") if v.strip()]
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"Invalid vector: {e}")


def load_tasks_file(path: str) -> list:
    with open(path, "r", encoding="utf-8") as f:
        payload = json.load(f)
    if isinstance(payload, dict):
        payload = payload.get("tasks", [])
    return payload


async def run_epoch(synthetic_count: int, tasks_file: Optional[str], show_results: bool, base_url: str):
    """Run one epoch"""
    payload = {"synthetic_count": synthetic_count, "return_results": show_results}
    if tasks_file:
        payload["tasks"] = load_tasks_file(tasks_file)
        print(f"Running epoch with {len(payload['tasks'])} task(s) from {tasks_file}...")
    else:
        print(f"Running epoch with {synthetic_count} synthetic task(s)...")

    async with httpx.AsyncClient(timeout=600.0) as client:
        response = await client.post(f"{base_url}/epochs", json=payload)

        if response.status_code == 200:
            data = response.json()
            metrics = data["metrics"]
            print(f"\n✓ Epoch {metrics['epoch']} completed")
            print(f"  Resolve rate: {metrics['resolve_rate']:.1%}")
            print(f"  Avg confidence: {metrics['avg_confidence']:.3f}")
            print(f"  Patterns learned: {metrics['patterns_learned']}")
            print(f"  Tasks protected: {metrics['tasks_protected']}")
            print(f"  Curriculum level: {metrics['curriculum_level']}")
            print(f"  Temperature: {metrics['temperature']:.2f}")
            if show_results and data.get("results"):
                print("\nResults:")
                print(json.dumps(data["results"], indent=2))
        else:
            print(f"\n✗ Epoch failed: {response.text}")
            sys.exit(1)


async def get_status(base_url: str):
    """Get engine status"""
    print("Getting engine status...")

    async with httpx.AsyncClient() as client:
        response = await client.get(f"{base_url}/status")

        if response.status_code == 200:
            print("\nEngine Status:")
            print(json.dumps(response.json(), indent=2))
        else:
            print(f"\n✗ Failed to get status: {response.text}")
            sys.exit(1)


async def find_similar(query: List[float], top_k: int, base_url: str):
    """Find patterns similar to a query vector"""
    print(f"Searching patterns (dim={len(query)}, top_k={top_k})...")

    async with httpx.AsyncClient() as client:
        response = await client.post(
            f"{base_url}/patterns/similar",
            json={"query": query, "top_k": top_k}
        )

        if response.status_code == 200:
            data = response.json()
            print(f"\nFound {data['total']} pattern(s):\n")
            for i, match in enumerate(data["matches"], 1):
                print(f"  {i}. similarity={match['similarity']:.4f} quality={match['quality']:.3f}")
        else:
            print(f"\n✗ Similarity search failed: {response.text}")
            sys.exit(1)


async def save_checkpoint(base_url: str):
    """Save a checkpoint"""
    print("Saving checkpoint...")

    async with httpx.AsyncClient(timeout=120.0) as client:
        response = await client.post(f"{base_url}/checkpoints")

        if response.status_code == 200:
            data = response.json()
            print(f"\n✓ Checkpoint saved")
            print(f"  ID: {data['checkpoint_id']}")
            print(f"  Epoch: {data['epoch']}")
            print(f"  State hash: {data['state_hash']}")
            print(f"  Path: {data['path']}")
        else:
            print(f"\n✗ Failed to save checkpoint: {response.text}")
            sys.exit(1)


async def list_checkpoints(base_url: str):
    """List registered checkpoints"""
    print("Listing checkpoints...")

    async with httpx.AsyncClient() as client:
        response = await client.get(f"{base_url}/checkpoints")

        if response.status_code == 200:
            data = response.json()
            print(f"\nFound {data['total']} checkpoint(s):\n")
            for entry in data["checkpoints"]:
                markers = []
                if entry["checkpoint_id"] == data.get("latest_checkpoint"):
                    markers.append("latest")
                if entry["checkpoint_id"] == data.get("known_good_checkpoint"):
                    markers.append("known-good")
                suffix = f" ({', '.join(markers)})" if markers else ""
                print(f"  ID: {entry['checkpoint_id']}{suffix}")
                print(f"    Epoch: {entry.get('epoch')}")
                print(f"    Created: {entry.get('created_at')}")
                print(f"    State hash: {entry.get('state_hash')}")
                print()
        else:
            print(f"\n✗ Failed to list checkpoints: {response.text}")
            sys.exit(1)


async def restore_checkpoint(checkpoint_id: Optional[str], base_url: str):
    """Restore a checkpoint"""
    print(f"Restoring checkpoint {checkpoint_id or '(latest)'}...")

    async with httpx.AsyncClient(timeout=120.0) as client:
        response = await client.post(
            f"{base_url}/checkpoints/restore",
            json={"checkpoint_id": checkpoint_id}
        )

        if response.status_code == 200:
            data = response.json()
            print(f"\n✓ Checkpoint restored")
            print(f"  ID: {data['checkpoint_id']}")
            print(f"  Epoch: {data['epoch']}")
        elif response.status_code == 409:
            detail = response.json().get("detail", {})
            print(f"\n✗ Integrity check failed")
            print(f"  Expected: {detail.get('expected')}")
            print(f"  Actual: {detail.get('actual')}")
            sys.exit(2)
        else:
            print(f"\n✗ Failed to restore checkpoint: {response.text}")
            sys.exit(1)


async def get_metrics(base_url: str):
    """Get per-epoch metrics"""
    print("Getting epoch metrics...")

    async with httpx.AsyncClient() as client:
        response = await client.get(f"{base_url}/metrics")

        if response.status_code == 200:
            print("\nEpoch Metrics:")
            print(json.dumps(response.json(), indent=2))
        else:
            print(f"\n✗ Failed to get metrics: {response.text}")
            sys.exit(1)


async def health_check(base_url: str):
    """Check service health"""
    async with httpx.AsyncClient() as client:
        response = await client.get(f"{base_url}/health")

        if response.status_code == 200:
            data = response.json()
            print(f"Service Status: {data['status']}")
            print(f"Version: {data['version']}")
            print("\nComponents:")
            for component, status in data['components'].items():
                print(f"  {component}: {status}")
        else:
            print(f"✗ Service unhealthy: {response.text}")
            sys.exit(1)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Continual Engine CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__
    )

    parser.add_argument(
        "--base-url",
        default=BASE_URL,
        help="Base URL for continual engine service"
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to execute")

    epoch_parser = subparsers.add_parser("run-epoch", help="Run one learning epoch")
    epoch_parser.add_argument("--synthetic-count", type=int, default=50, help="Synthetic tasks to generate")
    epoch_parser.add_argument("--tasks-file", help="JSON file with explicit tasks")
    epoch_parser.add_argument("--show-results", action="store_true", help="Print per-task results")

    subparsers.add_parser("status", help="Get engine status")

    similar_parser = subparsers.add_parser("similar", help="Find similar patterns")
    similar_parser.add_argument("query", type=parse_vector, help="Comma-separated query vector")
    similar_parser.add_argument("--top-k", type=int, default=3, help="Number of matches")

    subparsers.add_parser("save-checkpoint", help="Save a checkpoint")
    subparsers.add_parser("list-checkpoints", help="List checkpoints")

    restore_parser = subparsers.add_parser("restore", help="Restore a checkpoint")
    restore_parser.add_argument("--checkpoint-id", help="Checkpoint id (latest when omitted)")

    subparsers.add_parser("metrics", help="Get epoch metrics")
    subparsers.add_parser("health", help="Check service health")

    return parser


def main():
    parser = build_parser()
    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    if args.command == "run-epoch":
        asyncio.run(run_epoch(args.synthetic_count, args.tasks_file, args.show_results, args.base_url))
    elif args.command == "status":
        asyncio.run(get_status(args.base_url))
    elif args.command == "similar":
        asyncio.run(find_similar(args.query, args.top_k, args.base_url))
    elif args.command == "save-checkpoint":
        asyncio.run(save_checkpoint(args.base_url))
    elif args.command == "list-checkpoints":
        asyncio.run(list_checkpoints(args.base_url))
    elif args.command == "restore":
        asyncio.run(restore_checkpoint(args.checkpoint_id, args.base_url))
    elif args.command == "metrics":
        asyncio.run(get_metrics(args.base_url))
    elif args.command == "health":
        asyncio.run(health_check(args.base_url))


if __name__ == "__main__":
    main()
