"""
Engine Checkpoints

A checkpoint is an immutable snapshot of engine state with a SHA-256 integrity
hash over the {adapter, consolidation, patterns} triple. The metrics history
and buffer summary travel with the checkpoint but are not covered by the hash.

Document layout:
  format_version, model_name, checkpoint_id, created_at,
  adapter {A, B, rank, scale},
  buffer_stats {total, successful, avg_quality},
  consolidation {importance, optimal_weights, task_count, lambda},
  patterns {centroids, qualities},
  history [EpochMetrics...],
  state_hash
"""

import copy
import hashlib
import json
import logging
import os
import re
import tempfile
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Sequence, Tuple

from .errors import CheckpointError, IntegrityError

logger = logging.getLogger(__name__)

FORMAT_VERSION = "2.0.0"
SUPPORTED_FORMAT_VERSIONS = {"2.0.0"}

_REQUIRED_FIELDS = (
    "format_version",
    "adapter",
    "buffer_stats",
    "consolidation",
    "patterns",
    "history",
    "state_hash",
)


@dataclass(frozen=True)
class Checkpoint:
    """Immutable engine snapshot."""
    format_version: str
    model_name: str
    checkpoint_id: str
    created_at: str
    adapter: Dict[str, Any]
    buffer_stats: Dict[str, Any]
    consolidation: Dict[str, Any]
    patterns: Dict[str, Any]
    history: Tuple[Dict[str, Any], ...]
    state_hash: str

    @property
    def epoch(self) -> int:
        return int(self.history[-1]["epoch"]) if self.history else 0


def _canonical_json(payload: Any) -> str:
    return json.dumps(payload, sort_keys=True, separators=(",", ":"))


def compute_state_hash(
    adapter: Dict[str, Any],
    consolidation: Dict[str, Any],
    patterns: Dict[str, Any],
) -> str:
    """SHA-256 over the canonical JSON of the learned state."""
    payload = {"adapter": adapter, "consolidation": consolidation, "patterns": patterns}
    return hashlib.sha256(_canonical_json(payload).encode("utf-8")).hexdigest()


def build_checkpoint(
    model_name: str,
    adapter: Dict[str, Any],
    buffer_stats: Dict[str, Any],
    consolidation: Dict[str, Any],
    patterns: Dict[str, Any],
    history: Sequence[Dict[str, Any]],
    checkpoint_id: Optional[str] = None,
    created_at: Optional[str] = None,
) -> Checkpoint:
    """Snapshot component states; inputs are deep-copied so later mutation cannot leak in."""
    adapter = copy.deepcopy(adapter)
    consolidation = copy.deepcopy(consolidation)
    patterns = copy.deepcopy(patterns)

    return Checkpoint(
        format_version=FORMAT_VERSION,
        model_name=model_name,
        checkpoint_id=checkpoint_id or uuid.uuid4().hex[:16],
        created_at=created_at or datetime.now(timezone.utc).isoformat(),
        adapter=adapter,
        buffer_stats=dict(buffer_stats),
        consolidation=consolidation,
        patterns=patterns,
        history=tuple(copy.deepcopy(list(history))),
        state_hash=compute_state_hash(adapter, consolidation, patterns),
    )


def verify_checkpoint(checkpoint: Checkpoint) -> bool:
    """True when the recomputed state hash equals the stored one."""
    actual = compute_state_hash(checkpoint.adapter, checkpoint.consolidation, checkpoint.patterns)
    return actual == checkpoint.state_hash


def checkpoint_to_dict(checkpoint: Checkpoint) -> Dict[str, Any]:
    return {
        "format_version": checkpoint.format_version,
        "model_name": checkpoint.model_name,
        "checkpoint_id": checkpoint.checkpoint_id,
        "created_at": checkpoint.created_at,
        "adapter": checkpoint.adapter,
        "buffer_stats": checkpoint.buffer_stats,
        "consolidation": checkpoint.consolidation,
        "patterns": checkpoint.patterns,
        "history": list(checkpoint.history),
        "state_hash": checkpoint.state_hash,
    }


def checkpoint_from_dict(payload: Dict[str, Any], verify: bool = True, source: str = "checkpoint") -> Checkpoint:
    """
    Rebuild a checkpoint from its document form.

    Raises:
        CheckpointError: missing fields or unsupported format version
        IntegrityError: state hash mismatch (when verify is set)
    """
    if not isinstance(payload, dict):
        raise CheckpointError(f"{source}: checkpoint document must be a JSON object")
    missing = [name for name in _REQUIRED_FIELDS if name not in payload]
    if missing:
        raise CheckpointError(f"{source}: checkpoint is missing fields {missing}")
    if payload["format_version"] not in SUPPORTED_FORMAT_VERSIONS:
        raise CheckpointError(
            f"{source}: unsupported checkpoint format {payload['format_version']}"
        )

    checkpoint = Checkpoint(
        format_version=payload["format_version"],
        model_name=payload.get("model_name", "unknown"),
        checkpoint_id=payload.get("checkpoint_id", ""),
        created_at=payload.get("created_at", ""),
        adapter=payload["adapter"],
        buffer_stats=payload["buffer_stats"],
        consolidation=payload["consolidation"],
        patterns=payload["patterns"],
        history=tuple(payload["history"]),
        state_hash=payload["state_hash"],
    )

    if verify:
        actual = compute_state_hash(checkpoint.adapter, checkpoint.consolidation, checkpoint.patterns)
        if actual != checkpoint.state_hash:
            raise IntegrityError(expected=checkpoint.state_hash, actual=actual, source=source)
    return checkpoint


def sanitize_name(value: str) -> str:
    cleaned = re.sub(r"[^a-zA-Z0-9]", "_", value or "")
    return cleaned or "unknown"


def checkpoint_filename(checkpoint: Checkpoint) -> str:
    return f"{sanitize_name(checkpoint.model_name)}_{checkpoint.checkpoint_id}.json"


def write_checkpoint_file(checkpoint: Checkpoint, path: str) -> str:
    """Atomically write a checkpoint document to `path`."""
    directory = os.path.dirname(os.path.abspath(path))
    tmp_path = None
    try:
        os.makedirs(directory, exist_ok=True)
        with tempfile.NamedTemporaryFile(
            "w",
            dir=directory,
            prefix=".checkpoint-",
            suffix=".tmp",
            delete=False,
            encoding="utf-8",
        ) as fh:
            tmp_path = fh.name
            json.dump(checkpoint_to_dict(checkpoint), fh, indent=2)
        os.replace(tmp_path, path)
        tmp_path = None
    except (OSError, TypeError, ValueError) as e:
        logger.error(f"Failed to write checkpoint {checkpoint.checkpoint_id}: {e}")
        raise CheckpointError(f"Failed to write checkpoint to {path}: {e}") from e
    finally:
        if tmp_path and os.path.exists(tmp_path):
            os.remove(tmp_path)

    logger.info(f"✓ Checkpoint saved: {path}")
    return path


def save_checkpoint(checkpoint: Checkpoint, output_dir: str) -> str:
    """Write a checkpoint into `output_dir`; returns the file path."""
    return write_checkpoint_file(checkpoint, os.path.join(output_dir, checkpoint_filename(checkpoint)))


def load_checkpoint(path: str, verify: bool = True) -> Checkpoint:
    """
    Read and (by default) verify a checkpoint file.

    Raises:
        CheckpointError: I/O or decode failure
        IntegrityError: state hash mismatch
    """
    try:
        with open(path, "r", encoding="utf-8") as fh:
            payload = json.load(fh)
    except (OSError, json.JSONDecodeError) as e:
        logger.error(f"Failed to read checkpoint {path}: {e}")
        raise CheckpointError(f"Failed to read checkpoint {path}: {e}") from e

    checkpoint = checkpoint_from_dict(payload, verify=verify, source=path)
    logger.info(f"✓ Checkpoint loaded: {path} (epoch {checkpoint.epoch})")
    return checkpoint

