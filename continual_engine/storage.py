"""
Checkpoint Storage

Manages versioned engine checkpoints in a local directory.

Storage layout:
  {root}/{model_name}/{checkpoint_id}.json
  {root}/{model_name}/registry.json
"""

import hashlib
import json
import logging
import os
import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .checkpoint import Checkpoint, load_checkpoint, write_checkpoint_file
from .errors import CheckpointError, CheckpointNotFoundError

logger = logging.getLogger(__name__)

REGISTRY_NAME = "registry.json"


class CheckpointStore:
    """
    Versioned checkpoint directory with a registry of pointers.

    The registry tracks every saved checkpoint plus `latest_checkpoint` and
    `known_good_checkpoint` pointers used for restore and rollback.
    """

    def __init__(self, root: str, model_name: str = "default-model"):
        self.root = root
        self.model_name = self._sanitize_path_component(model_name)
        self.directory = os.path.join(root, self.model_name)
        logger.info(f"Checkpoint store initialized: {self.directory}")

    @staticmethod
    def _sanitize_path_component(value: str) -> str:
        cleaned = re.sub(r"[^a-zA-Z0-9._-]", "-", value or "")
        return cleaned.strip(".-") or "unknown"

    @staticmethod
    def _sha256_file(path: str) -> str:
        digest = hashlib.sha256()
        with open(path, "rb") as fh:
            for chunk in iter(lambda: fh.read(8192), b""):
                digest.update(chunk)
        return digest.hexdigest()

    def _registry_path(self) -> str:
        return os.path.join(self.directory, REGISTRY_NAME)

    def _checkpoint_path(self, checkpoint_id: str) -> str:
        return os.path.join(self.directory, f"{self._sanitize_path_component(checkpoint_id)}.json")

    def _build_default_registry(self) -> Dict[str, Any]:
        return {
            "model_name": self.model_name,
            "updated_at": datetime.now(timezone.utc).isoformat(),
            "latest_checkpoint": None,
            "known_good_checkpoint": None,
            "versions": {},
        }

    def _load_registry(self) -> Dict[str, Any]:
        path = self._registry_path()
        if not os.path.exists(path):
            return self._build_default_registry()
        try:
            with open(path, "r", encoding="utf-8") as fh:
                registry = json.load(fh)
        except (OSError, json.JSONDecodeError) as e:
            raise CheckpointError(f"Failed to read checkpoint registry {path}: {e}") from e

        registry.setdefault("model_name", self.model_name)
        registry.setdefault("latest_checkpoint", None)
        registry.setdefault("known_good_checkpoint", None)
        registry.setdefault("versions", {})
        return registry

    def _save_registry(self, registry: Dict[str, Any]) -> None:
        path = self._registry_path()
        tmp_path = f"{path}.tmp"
        try:
            os.makedirs(self.directory, exist_ok=True)
            with open(tmp_path, "w", encoding="utf-8") as fh:
                json.dump(registry, fh, indent=2)
            os.replace(tmp_path, path)
        except OSError as e:
            raise CheckpointError(f"Failed to write checkpoint registry {path}: {e}") from e

    def save(self, checkpoint: Checkpoint) -> str:
        """Write a checkpoint and register it as latest."""
        path = write_checkpoint_file(checkpoint, self._checkpoint_path(checkpoint.checkpoint_id))

        registry = self._load_registry()
        registry["versions"][checkpoint.checkpoint_id] = {
            "path": path,
            "state_hash": checkpoint.state_hash,
            "file_sha256": self._sha256_file(path),
            "created_at": checkpoint.created_at,
            "epoch": checkpoint.epoch,
        }
        registry["latest_checkpoint"] = checkpoint.checkpoint_id
        registry["updated_at"] = datetime.now(timezone.utc).isoformat()
        self._save_registry(registry)

        logger.info(f"✓ Checkpoint {checkpoint.checkpoint_id} registered (epoch {checkpoint.epoch})")
        return path

    def load(self, checkpoint_id: Optional[str] = None, verify: bool = True) -> Checkpoint:
        """Load a checkpoint by id, or the latest one when no id is given."""
        registry = self._load_registry()
        checkpoint_id = checkpoint_id or registry.get("latest_checkpoint")
        if not checkpoint_id:
            raise CheckpointNotFoundError(f"No checkpoints registered for {self.model_name}")
        if checkpoint_id not in registry["versions"]:
            raise CheckpointNotFoundError(f"Unknown checkpoint {checkpoint_id} for {self.model_name}")

        return load_checkpoint(registry["versions"][checkpoint_id]["path"], verify=verify)

    def list_checkpoints(self) -> List[Dict[str, Any]]:
        """Registered checkpoints, oldest first."""
        registry = self._load_registry()
        entries = [
            {"checkpoint_id": checkpoint_id, **entry}
            for checkpoint_id, entry in registry["versions"].items()
        ]
        return sorted(entries, key=lambda e: (e.get("created_at") or "", e["checkpoint_id"]))

    def mark_known_good(self, checkpoint_id: str) -> Dict[str, Any]:
        registry = self._load_registry()
        if checkpoint_id not in registry["versions"]:
            raise CheckpointNotFoundError(f"Unknown checkpoint {checkpoint_id} for {self.model_name}")
        registry["known_good_checkpoint"] = checkpoint_id
        registry["updated_at"] = datetime.now(timezone.utc).isoformat()
        self._save_registry(registry)
        return registry

    def delete(self, checkpoint_id: str) -> bool:
        """Delete a checkpoint file and its registry entry."""
        registry = self._load_registry()
        entry = registry["versions"].pop(checkpoint_id, None)
        if entry is None:
            return False

        try:
            os.remove(entry["path"])
        except FileNotFoundError:
            logger.warning(f"Checkpoint file already missing: {entry['path']}")

        if registry.get("latest_checkpoint") == checkpoint_id:
            remaining = sorted(registry["versions"].items(), key=lambda kv: kv[1].get("created_at") or "")
            registry["latest_checkpoint"] = remaining[-1][0] if remaining else None
        if registry.get("known_good_checkpoint") == checkpoint_id:
            registry["known_good_checkpoint"] = None
        registry["updated_at"] = datetime.now(timezone.utc).isoformat()
        self._save_registry(registry)

        logger.info(f"✓ Checkpoint {checkpoint_id} deleted")
        return True

    def get_registry(self) -> Dict[str, Any]:
        return self._load_registry()
