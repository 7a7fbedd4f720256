import json
import os

import pytest

from continual_engine.checkpoint import (
    FORMAT_VERSION,
    build_checkpoint,
    checkpoint_filename,
    checkpoint_from_dict,
    checkpoint_to_dict,
    compute_state_hash,
    load_checkpoint,
    save_checkpoint,
    verify_checkpoint,
)
from continual_engine.errors import CheckpointError, IntegrityError


def _snapshot(**overrides):
    payload = {
        "model_name": "Qwen2.5-Coder-1.5B",
        "adapter": {"A": [[0.1, 0.2]], "B": [[0.3, 0.4]], "rank": 1, "scale": 1.0},
        "buffer_stats": {"total": 12, "successful": 4, "avg_quality": 0.41},
        "consolidation": {"importance": [0.0, 0.1], "optimal_weights": [0.0, 0.0], "task_count": 1, "lambda": 500.0},
        "patterns": {"centroids": [[1.0, 0.0]], "qualities": [0.8]},
        "history": [{"epoch": 1, "resolve_rate": 0.5}, {"epoch": 2, "resolve_rate": 0.6}],
    }
    payload.update(overrides)
    return build_checkpoint(**payload)


def test_build_checkpoint_hashes_learned_state():
    snapshot = _snapshot()

    assert snapshot.format_version == FORMAT_VERSION
    assert len(snapshot.checkpoint_id) == 16
    assert snapshot.epoch == 2
    assert verify_checkpoint(snapshot)


def test_hash_ignores_history_and_buffer_summary():
    a = _snapshot()
    b = _snapshot(history=[], buffer_stats={"total": 0, "successful": 0, "avg_quality": 0.0})

    assert a.state_hash == b.state_hash
    assert b.epoch == 0


def test_hash_is_independent_of_key_order():
    adapter = {"A": [[0.1]], "B": [[0.2]], "rank": 1, "scale": 1.0}
    reordered = {"scale": 1.0, "rank": 1, "B": [[0.2]], "A": [[0.1]]}
    consolidation = {"importance": [0.0], "optimal_weights": [0.0], "task_count": 0, "lambda": 1.0}
    patterns = {"centroids": [], "qualities": []}

    assert compute_state_hash(adapter, consolidation, patterns) == compute_state_hash(reordered, consolidation, patterns)


def test_inputs_are_copied_into_the_snapshot():
    adapter = {"A": [[0.1, 0.2]], "B": [[0.3, 0.4]], "rank": 1, "scale": 1.0}
    snapshot = _snapshot(adapter=adapter)

    adapter["A"][0][0] = 99.0

    assert snapshot.adapter["A"][0][0] == 0.1
    assert verify_checkpoint(snapshot)


def test_file_round_trip_preserves_hash(tmp_path):
    snapshot = _snapshot()

    path = save_checkpoint(snapshot, str(tmp_path))
    loaded = load_checkpoint(path)

    assert os.path.basename(path) == checkpoint_filename(snapshot)
    assert loaded.state_hash == snapshot.state_hash
    assert compute_state_hash(loaded.adapter, loaded.consolidation, loaded.patterns) == snapshot.state_hash
    assert loaded.history == snapshot.history
    assert not [name for name in os.listdir(tmp_path) if name.endswith(".tmp")]


def test_filename_sanitizes_model_name():
    snapshot = _snapshot(model_name="Qwen2.5-Coder/1.5B", checkpoint_id="abc")

    assert checkpoint_filename(snapshot) == "Qwen2_5_Coder_1_5B_abc.json"


def test_tampered_file_raises_integrity_error(tmp_path):
    snapshot = _snapshot()
    path = save_checkpoint(snapshot, str(tmp_path))
    with open(path, "r", encoding="utf-8") as fh:
        document = json.load(fh)
    document["adapter"]["A"][0][0] = 0.5
    with open(path, "w", encoding="utf-8") as fh:
        json.dump(document, fh)

    with pytest.raises(IntegrityError) as excinfo:
        load_checkpoint(path)

    assert excinfo.value.expected == snapshot.state_hash
    assert excinfo.value.actual != snapshot.state_hash


def test_unverified_load_skips_hash_check():
    snapshot = _snapshot()
    document = checkpoint_to_dict(snapshot)
    document["state_hash"] = "f" * 64

    loaded = checkpoint_from_dict(document, verify=False)

    assert not verify_checkpoint(loaded)


def test_missing_file_raises_checkpoint_error(tmp_path):
    with pytest.raises(CheckpointError):
        load_checkpoint(str(tmp_path / "missing.json"))


def test_malformed_json_raises_checkpoint_error(tmp_path):
    path = tmp_path / "broken.json"
    path.write_text("{not json", encoding="utf-8")

    with pytest.raises(CheckpointError):
        load_checkpoint(str(path))


def test_missing_fields_and_unknown_version_are_rejected():
    document = checkpoint_to_dict(_snapshot())

    with pytest.raises(CheckpointError, match="missing fields"):
        checkpoint_from_dict({k: v for k, v in document.items() if k != "patterns"})

    with pytest.raises(CheckpointError, match="unsupported"):
        checkpoint_from_dict({**document, "format_version": "1.0.0"})


def test_unwritable_destination_raises_checkpoint_error(tmp_path):
    blocker = tmp_path / "not-a-directory"
    blocker.write_text("", encoding="utf-8")

    with pytest.raises(CheckpointError):
        save_checkpoint(_snapshot(), str(blocker / "nested"))
