"""
Continual Learning Orchestrator

Drives the epoch loop over the four learning components:

    Idle -> RunningTasks -> Consolidating -> Idle

Task phase (per task):
    adapter.forward -> pattern lookup -> confidence/success
    -> guard.dampen -> buffer.record -> guard.update_importance + adapter.accumulate_gradient

Consolidation phase (per epoch):
    adapter.apply_accumulated -> buffer.drain_high_quality -> patterns.extract_patterns
    -> buffer.sample_for_replay -> curriculum/temperature advance -> EpochMetrics

The orchestrator owns every component; components never reference each other.
"""

import copy
import logging
import time
from dataclasses import asdict, dataclass, field, fields
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np

from . import checkpoint as checkpoint_io
from . import metrics as engine_metrics
from .adapter import LowRankAdapter, adaptive_rank
from .confidence import (
    base_capability,
    combine_confidence,
    curriculum_adjustment,
    final_quality,
    is_pattern_match,
    learning_boost,
    learning_quality,
    pattern_boost,
    should_learn,
    success_threshold,
    temperature_noise,
)
from .config import EngineConfig
from .consolidation import ConsolidationGuard
from .curriculum import curriculum_level_at, temperature_at
from .errors import CheckpointError, ConfigurationError, EngineError, IntegrityError
from .experience import ExperienceBuffer, Trajectory, TrajectoryStep
from .patterns import PatternBank, PatternMatch

logger = logging.getLogger(__name__)

PATTERN_LOOKUP_TOP_K = 3


class EngineState(str, Enum):
    IDLE = "idle"
    RUNNING_TASKS = "running_tasks"
    CONSOLIDATING = "consolidating"


@dataclass
class Task:
    """A unit of work submitted by the caller."""
    id: str
    type: str = "generic"
    difficulty: float = 0.5
    features: Optional[Sequence[float]] = None
    target: Optional[Sequence[float]] = None
    category: Optional[str] = None
    prompt: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class TaskResult:
    task_id: str
    success: bool
    confidence: float
    latency_ms: float
    tokens_produced: int
    pattern_matched: bool
    learning_applied: bool

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class EpochMetrics:
    """Append-only per-epoch record."""
    epoch: int
    trajectory_count: int
    patterns_learned: int
    pending_adapter_updates: int
    tasks_protected: int
    resolve_rate: float
    avg_confidence: float
    curriculum_level: int
    temperature: float
    replay_count: int
    effective_learning_rate: float
    avg_latency_ms: float = 0.0
    timestamp: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "EpochMetrics":
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in payload.items() if k in known})


TaskLike = Union[Task, Dict[str, Any]]


class Orchestrator:
    """
    Continual learning engine: one instance per model/domain, single-threaded.
    """

    def __init__(
        self,
        config: EngineConfig,
        rng: Optional[np.random.Generator] = None,
        rank_fn: Callable[[float], int] = adaptive_rank,
    ):
        """
        Initialize the engine.

        Args:
            config: Engine configuration (validated here)
            rng: Random source for every stochastic step (seeded from config.seed by default)
            rank_fn: Maps model capacity to adapter rank when config.rank is unset
        """
        config.validate_engine()
        self.config = config
        self.rng = rng if rng is not None else np.random.default_rng(config.seed)
        self.dim = config.embedding_dim

        rank = config.rank if config.rank is not None else rank_fn(config.model_capacity)
        if rank > self.dim:
            raise ConfigurationError(
                f"Adapter rank {rank} for capacity {config.model_capacity} exceeds embedding_dim {self.dim}"
            )

        self.adapter = LowRankAdapter(
            dim=self.dim,
            rank=rank,
            scale=config.scale,
            base_step=config.base_step,
            momentum_beta=config.momentum_beta,
            rng=self.rng,
        )
        self.guard = ConsolidationGuard(dim=self.dim, ewc_lambda=config.ewc_lambda)
        self.buffer = ExperienceBuffer(
            capacity=config.buffer_capacity,
            success_quality_bar=config.success_quality_bar,
        )
        self.patterns = PatternBank(
            dim=self.dim,
            max_patterns=config.max_patterns,
            min_trajectories=config.min_trajectories_for_extraction,
            rng=self.rng,
        )

        self.state = EngineState.IDLE
        self.epoch = 0
        self.curriculum_level = 0
        self.temperature = config.initial_temperature
        self.effective_learning_rate = config.base_learning_rate
        self.history: List[EpochMetrics] = []
        self.last_results: List[TaskResult] = []

        engine_metrics.buffer_capacity.labels(model=config.model_name).set(config.buffer_capacity)
        logger.info(
            f"Orchestrator initialized for {config.model_name}: dim={self.dim}, rank={rank}, "
            f"lambda={config.ewc_lambda}"
        )

    # ------------------------------------------------------------------
    # Task phase
    # ------------------------------------------------------------------

    def validate_task(self, task: Task) -> None:
        """Reject tasks whose vectors or difficulty the engine cannot use."""
        for name in ("features", "target"):
            vector = getattr(task, name)
            if vector is None:
                continue
            length = len(vector)
            if length != self.dim:
                raise ConfigurationError(
                    f"Task {task.id}: {name} has length {length}, expected {self.dim}"
                )
            if not np.all(np.isfinite(np.asarray(vector, dtype=np.float64))):
                raise ConfigurationError(f"Task {task.id}: {name} contains non-finite values")
        if not 0.0 <= task.difficulty <= 1.0:
            raise ConfigurationError(
                f"Task {task.id}: difficulty must be within [0, 1] (got {task.difficulty})"
            )

    def _query_vector(self, task: Task) -> np.ndarray:
        if task.features is not None:
            return np.asarray(task.features, dtype=np.float64)
        return self.rng.random(self.dim) - 0.5

    def _estimate_gradient(self, task: Task, query: np.ndarray, adapted: np.ndarray, success: bool) -> np.ndarray:
        """Residual against the task target, or a synthetic exploration estimate."""
        if task.target is not None:
            return (query + adapted) - np.asarray(task.target, dtype=np.float64)
        cc = self.config.confidence
        magnitude = cc.success_gradient_scale if success else cc.failure_gradient_scale
        return (self.rng.random(self.dim) - 0.5) * magnitude

    def _confidence(self, matches: Sequence[PatternMatch]) -> float:
        cc = self.config.confidence
        terms = [
            base_capability(self.config.model_capacity, cc),
            learning_boost(self.epoch, cc),
            pattern_boost(matches, cc),
            curriculum_adjustment(self.curriculum_level, self.config.max_curriculum_level, cc),
            temperature_noise(self.temperature, cc, rng=self.rng),
        ]
        return combine_confidence(terms, cc)

    def run_task(self, task: TaskLike) -> TaskResult:
        """Run one task: adapt, score, record the trajectory and accumulate learning signal."""
        if not isinstance(task, Task):
            task = Task(**task)
        cc = self.config.confidence
        start = time.perf_counter()

        query = self._query_vector(task)
        adapted = self.adapter.forward(query)

        matches = self.patterns.find_similar(query, PATTERN_LOOKUP_TOP_K)
        confidence = self._confidence(matches)
        success = confidence > success_threshold(task.difficulty, self.config.model_capacity, cc)
        learn = should_learn(confidence, success, cc)

        gradient = dampened = None
        if learn:
            gradient = self._estimate_gradient(task, query, adapted, success)
            dampened = self.guard.dampen(gradient)

        trajectory = Trajectory(
            id=self.buffer.next_id(),
            query_embedding=query,
            steps=(TrajectoryStep(hidden=adapted, output=query + adapted, quality=confidence),),
            final_quality=final_quality(confidence, success, cc),
            timestamp=time.time(),
            task_type=task.type,
        )
        self.buffer.record(trajectory)

        if learn:
            self.guard.update_importance(gradient)
            self.adapter.accumulate_gradient(query, dampened, learning_quality(confidence, success, cc))

        latency = time.perf_counter() - start
        engine_metrics.task_latency_seconds.labels(model=self.config.model_name).observe(latency)

        return TaskResult(
            task_id=task.id,
            success=success,
            confidence=confidence,
            latency_ms=latency * 1000,
            tokens_produced=int(self.rng.integers(50, 200)),
            pattern_matched=is_pattern_match(matches, cc),
            learning_applied=self.adapter.pending_updates > 0,
        )

    # ------------------------------------------------------------------
    # Epoch loop
    # ------------------------------------------------------------------

    def run_epoch(self, tasks: Iterable[TaskLike]) -> EpochMetrics:
        """
        Run every task, then consolidate.

        All tasks are validated before the engine leaves Idle. If the epoch is
        interrupted, trajectories recorded so far are kept and the engine
        returns to Idle.
        """
        if self.state != EngineState.IDLE:
            raise EngineError(f"Cannot start an epoch while {self.state.value}")

        prepared = [t if isinstance(t, Task) else Task(**t) for t in tasks]
        for task in prepared:
            self.validate_task(task)

        self.state = EngineState.RUNNING_TASKS
        try:
            results = [self.run_task(task) for task in prepared]
            self.last_results = results
            return self.consolidate(results)
        finally:
            self.state = EngineState.IDLE

    def _replay(self) -> int:
        replay = self.buffer.sample_for_replay(self.config.replay_count)
        scale = self.config.confidence.replay_gradient_scale
        for trajectory in replay:
            gradient = (self.rng.random(self.dim) - 0.5) * scale
            self.adapter.accumulate_gradient(
                trajectory.query_embedding,
                gradient,
                trajectory.final_quality * self.config.replay_weight,
            )
        return len(replay)

    def consolidate(self, results: Sequence[TaskResult]) -> EpochMetrics:
        """Epoch boundary: apply updates, extract patterns, replay, advance schedules."""
        cfg = self.config
        self.state = EngineState.CONSOLIDATING
        self.epoch += 1

        pending = self.adapter.pending_updates
        if pending >= cfg.min_pending_updates:
            self.effective_learning_rate = self.adapter.apply_accumulated(self.effective_learning_rate)
            self.guard.register_task()
            self.guard.set_optimal_weights(self.adapter.delta_diagonal())
            engine_metrics.adapter_updates_total.labels(model=cfg.model_name).inc(pending)
        elif pending:
            logger.info(f"Deferring adapter update: {pending} < {cfg.min_pending_updates} pending")

        high_quality = self.buffer.drain_high_quality(cfg.pattern_threshold)
        self.patterns.extract_patterns(high_quality, cfg.patterns_per_extraction)

        replay_count = self._replay()

        self.curriculum_level = curriculum_level_at(
            self.epoch,
            current_level=self.curriculum_level,
            epochs_per_level=cfg.curriculum_epochs_per_level,
            max_level=cfg.max_curriculum_level,
        )
        self.temperature = temperature_at(
            self.epoch,
            initial=cfg.initial_temperature,
            decay_rate=cfg.temperature_decay_rate,
            floor=cfg.temperature_floor,
        )

        count = len(results)
        epoch_metrics = EpochMetrics(
            epoch=self.epoch,
            trajectory_count=len(self.buffer),
            patterns_learned=self.patterns.pattern_count(),
            pending_adapter_updates=self.adapter.pending_updates,
            tasks_protected=self.guard.task_count,
            resolve_rate=sum(1 for r in results if r.success) / count if count else 0.0,
            avg_confidence=sum(r.confidence for r in results) / count if count else 0.0,
            curriculum_level=self.curriculum_level,
            temperature=self.temperature,
            replay_count=replay_count,
            effective_learning_rate=self.effective_learning_rate,
            avg_latency_ms=sum(r.latency_ms for r in results) / count if count else 0.0,
            timestamp=time.time(),
        )
        self.history.append(epoch_metrics)
        self._publish_metrics(epoch_metrics)
        self.state = EngineState.IDLE

        logger.info(
            f"Epoch {self.epoch} [{cfg.model_name}]: resolve={epoch_metrics.resolve_rate:.1%}, "
            f"confidence={epoch_metrics.avg_confidence:.3f}, patterns={epoch_metrics.patterns_learned}, "
            f"level={self.curriculum_level}, temperature={self.temperature:.2f}"
        )
        return epoch_metrics

    def _publish_metrics(self, m: EpochMetrics) -> None:
        model = self.config.model_name
        engine_metrics.epochs_total.labels(model=model).inc()
        engine_metrics.resolve_rate.labels(model=model).set(m.resolve_rate)
        engine_metrics.average_confidence.labels(model=model).set(m.avg_confidence)
        engine_metrics.buffer_size.labels(model=model).set(m.trajectory_count)
        engine_metrics.patterns_learned.labels(model=model).set(m.patterns_learned)
        engine_metrics.tasks_protected.labels(model=model).set(m.tasks_protected)
        engine_metrics.temperature.labels(model=model).set(m.temperature)
        engine_metrics.curriculum_level.labels(model=model).set(m.curriculum_level)
        engine_metrics.effective_learning_rate.labels(model=model).set(m.effective_learning_rate)
        engine_metrics.replayed_trajectories_total.labels(model=model).inc(m.replay_count)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def find_similar(self, query: Sequence[float], top_k: int = 3) -> List[PatternMatch]:
        if len(query) != self.dim:
            raise ConfigurationError(f"Query has length {len(query)}, expected {self.dim}")
        return self.patterns.find_similar(query, top_k)

    def status(self) -> Dict[str, Any]:
        return {
            "model_name": self.config.model_name,
            "state": self.state.value,
            "epoch": self.epoch,
            "embedding_dim": self.dim,
            "rank": self.adapter.rank,
            "curriculum_level": self.curriculum_level,
            "temperature": self.temperature,
            "effective_learning_rate": self.effective_learning_rate,
            "pending_adapter_updates": self.adapter.pending_updates,
            "tasks_protected": self.guard.task_count,
            "patterns_learned": self.patterns.pattern_count(),
            "buffer_size": len(self.buffer),
            "buffer_capacity": self.buffer.capacity,
            "buffer_stats": self.buffer.stats(),
        }

    # ------------------------------------------------------------------
    # Checkpoints
    # ------------------------------------------------------------------

    def checkpoint(self) -> checkpoint_io.Checkpoint:
        """Immutable snapshot of the current learned state."""
        return checkpoint_io.build_checkpoint(
            model_name=self.config.model_name,
            adapter=self.adapter.get_state(),
            buffer_stats=self.buffer.stats(),
            consolidation=self.guard.get_state(),
            patterns=self.patterns.get_state(),
            history=[m.to_dict() for m in self.history],
        )

    def save_checkpoint(self, output_dir: str) -> str:
        """
        Snapshot and write a checkpoint into output_dir.

        Raises:
            CheckpointError: the write failed; engine state is unaffected
        """
        model = self.config.model_name
        snapshot = self.checkpoint()
        try:
            path = checkpoint_io.save_checkpoint(snapshot, output_dir)
        except CheckpointError:
            engine_metrics.checkpoint_operations_total.labels(model=model, operation="save", status="failed").inc()
            raise
        engine_metrics.checkpoint_operations_total.labels(model=model, operation="save", status="success").inc()
        return path

    def load_checkpoint(self, path: str) -> checkpoint_io.Checkpoint:
        """
        Load, verify and restore a checkpoint file.

        Raises:
            IntegrityError: stored hash does not match the state
            CheckpointError: unreadable or incompatible checkpoint
        """
        model = self.config.model_name
        try:
            snapshot = checkpoint_io.load_checkpoint(path)
            self.restore(snapshot)
        except IntegrityError:
            engine_metrics.checkpoint_operations_total.labels(model=model, operation="load", status="integrity_error").inc()
            raise
        except CheckpointError:
            engine_metrics.checkpoint_operations_total.labels(model=model, operation="load", status="failed").inc()
            raise
        engine_metrics.checkpoint_operations_total.labels(model=model, operation="load", status="success").inc()
        return snapshot

    def restore(self, snapshot: checkpoint_io.Checkpoint) -> None:
        """
        Restore learned state from a verified checkpoint; all-or-nothing.

        Buffer contents are not part of a checkpoint; only the trajectory id
        counter is carried forward.
        """
        if not checkpoint_io.verify_checkpoint(snapshot):
            actual = checkpoint_io.compute_state_hash(snapshot.adapter, snapshot.consolidation, snapshot.patterns)
            raise IntegrityError(expected=snapshot.state_hash, actual=actual, source=snapshot.checkpoint_id)
        if self.state != EngineState.IDLE:
            raise EngineError(f"Cannot restore while {self.state.value}")

        try:
            # Validate against scratch copies first so a bad snapshot changes nothing
            copy.deepcopy(self.adapter).load_state(snapshot.adapter)
            copy.deepcopy(self.guard).load_state(snapshot.consolidation)
            scratch_bank = PatternBank(self.dim, self.patterns.max_patterns, self.patterns.min_trajectories)
            scratch_bank.load_state(snapshot.patterns)
            history = [self._history_entry(entry) for entry in snapshot.history]
            total_recorded = self._recorded_total(snapshot.buffer_stats)
            schedule = self._schedule_from(history)
        except (ConfigurationError, AttributeError, KeyError, TypeError, ValueError) as e:
            raise CheckpointError(f"Checkpoint {snapshot.checkpoint_id} is incompatible with this engine: {e}") from e

        self.adapter.load_state(snapshot.adapter)
        self.guard.load_state(snapshot.consolidation)
        self.patterns.load_state(snapshot.patterns)
        self.history = history
        self.buffer.restore_counters(total_recorded)
        self.epoch, self.curriculum_level, self.temperature, self.effective_learning_rate = schedule

        logger.info(
            f"✓ Restored checkpoint {snapshot.checkpoint_id} for {self.config.model_name} at epoch {self.epoch}"
        )

    @staticmethod
    def _history_entry(entry: Any) -> EpochMetrics:
        if not isinstance(entry, Mapping):
            raise ConfigurationError(f"History entry must be an object (got {type(entry).__name__})")
        return EpochMetrics.from_dict(entry)

    @staticmethod
    def _recorded_total(buffer_stats: Any) -> int:
        if not isinstance(buffer_stats, Mapping):
            raise ConfigurationError(f"buffer_stats must be an object (got {type(buffer_stats).__name__})")
        total = int(buffer_stats.get("total", 0))
        if total < 0:
            raise ConfigurationError(f"buffer_stats.total must be non-negative (got {total})")
        return total

    def _schedule_from(self, history: Sequence[EpochMetrics]) -> Tuple[int, int, float, float]:
        """Epoch, curriculum level, temperature and learning rate to resume from."""
        cfg = self.config
        if not history:
            return 0, 0, cfg.initial_temperature, cfg.base_learning_rate

        last = history[-1]
        epoch = int(last.epoch)
        level = int(last.curriculum_level)
        temperature = float(last.temperature)
        lr = float(last.effective_learning_rate)
        if epoch < 0:
            raise ConfigurationError(f"Epoch must be non-negative (got {epoch})")
        if not (np.isfinite(temperature) and np.isfinite(lr)) or lr <= 0:
            raise ConfigurationError(f"Invalid schedule values: temperature={temperature}, learning_rate={lr}")

        bounded_level = min(cfg.max_curriculum_level, max(0, level))
        bounded_temperature = max(cfg.temperature_floor, min(cfg.initial_temperature, temperature))
        if bounded_level != level or bounded_temperature != temperature:
            logger.warning(
                f"Clamped restored schedule: level {level} -> {bounded_level}, "
                f"temperature {temperature} -> {bounded_temperature}"
            )
        return epoch, bounded_level, bounded_temperature, lr
