#!/usr/bin/env python3
"""
Prometheus metrics for the Continual Engine.

Exports metrics for:
- Epoch outcomes (resolve rate, confidence)
- Adapter updates and effective learning rate
- Experience buffer and pattern bank occupancy
- Consolidation (tasks protected)
- Checkpoint operations
"""

from prometheus_client import Counter, Gauge, Histogram


# Epoch metrics
epochs_total = Counter(
    'continual_epochs_total',
    'Total number of learning epochs completed',
    ['model']
)

resolve_rate = Gauge(
    'continual_resolve_rate',
    'Fraction of tasks resolved in the last epoch',
    ['model']
)

average_confidence = Gauge(
    'continual_average_confidence',
    'Average task confidence in the last epoch',
    ['model']
)

task_latency_seconds = Histogram(
    'continual_task_latency_seconds',
    'Time to run a single task through the engine',
    ['model'],
    buckets=[0.0005, 0.001, 0.005, 0.01, 0.05, 0.1, 0.5]
)

# Adapter metrics
adapter_updates_total = Counter(
    'continual_adapter_updates_total',
    'Total number of accumulated adapter updates applied',
    ['model']
)

effective_learning_rate = Gauge(
    'continual_effective_learning_rate',
    'Adapter learning rate after the last apply step',
    ['model']
)

replayed_trajectories_total = Counter(
    'continual_replayed_trajectories_total',
    'Total number of trajectories fed back through replay',
    ['model']
)

# Buffer / pattern metrics
buffer_size = Gauge(
    'continual_buffer_size',
    'Current number of buffered trajectories',
    ['model']
)

buffer_capacity = Gauge(
    'continual_buffer_capacity',
    'Maximum capacity of the experience buffer',
    ['model']
)

patterns_learned = Gauge(
    'continual_patterns_learned',
    'Number of pattern centroids currently held',
    ['model']
)

# Consolidation / schedule metrics
tasks_protected = Gauge(
    'continual_tasks_protected',
    'Number of tasks registered with the consolidation guard',
    ['model']
)

temperature = Gauge(
    'continual_temperature',
    'Current confidence noise temperature',
    ['model']
)

curriculum_level = Gauge(
    'continual_curriculum_level',
    'Current curriculum level',
    ['model']
)

# Checkpoints
checkpoint_operations_total = Counter(
    'continual_checkpoint_operations_total',
    'Checkpoint save/load operations',
    ['model', 'operation', 'status']  # operation: save, load; status: success, failed, integrity_error
)
