#!/usr/bin/env python3
"""
Continual Engine Service

Hosts one continual learning engine with:
- Low-rank adapter updates with momentum
- EWC-style consolidation against forgetting
- Quality-gated experience buffer with replay
- Pattern bank similarity lookup
- Hash-verified checkpoints in a versioned local store
"""

import os
import logging
from typing import Dict, Any, Optional, List
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException
from fastapi.responses import Response
from pydantic import BaseModel, Field
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from continual_engine.config import EngineConfig, load_config
from continual_engine.curriculum import generate_curriculum_tasks
from continual_engine.errors import (
    CheckpointError,
    CheckpointNotFoundError,
    ConfigurationError,
    EngineError,
    IntegrityError,
)
from continual_engine.orchestrator import Orchestrator, Task
from continual_engine.storage import CheckpointStore

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

SERVICE_VERSION = "1.0.0"

# Global state
config: Optional[EngineConfig] = None
engine: Optional[Orchestrator] = None
store: Optional[CheckpointStore] = None


def _checkpoint_root() -> str:
    return os.getenv("CHECKPOINT_DIR", "./checkpoints")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifecycle management for the service"""
    global config, engine, store

    logger.info("Starting Continual Engine Service...")

    try:
        config = load_config()
        logger.info(f"Configuration: {config.model_dump()}")

        engine = Orchestrator(config)
        logger.info("✓ Engine initialized")

        store = CheckpointStore(_checkpoint_root(), model_name=config.model_name)
        logger.info("✓ Checkpoint store initialized")

        if os.getenv("RESTORE_LATEST_CHECKPOINT", "false").lower() == "true":
            try:
                engine.restore(store.load())
                logger.info("✓ Restored latest checkpoint")
            except CheckpointError as e:
                # Integrity failures land here too; keep the cold-started engine
                logger.warning(f"Starting cold, checkpoint restore failed: {e}")

        logger.info("Continual Engine Service ready!")

        yield

    finally:
        logger.info("Continual Engine Service stopped")


# Create FastAPI app
app = FastAPI(
    title="Continual Engine Service",
    description="Online adaptation with low-rank updates, consolidation, experience replay and patterns",
    version=SERVICE_VERSION,
    lifespan=lifespan
)


# Request/Response models
class TaskPayload(BaseModel):
    """Single task submitted for an epoch"""
    id: str
    type: str = Field(default="generic")
    difficulty: float = Field(default=0.5, ge=0.0, le=1.0)
    features: Optional[List[float]] = Field(default=None, description="Feature vector (embedding_dim long)")
    target: Optional[List[float]] = Field(default=None, description="Optional target vector")
    category: Optional[str] = None


class EpochRequest(BaseModel):
    """Epoch request: explicit tasks, or a synthetic curriculum batch"""
    tasks: Optional[List[TaskPayload]] = Field(default=None)
    synthetic_count: int = Field(default=50, gt=0, description="Synthetic tasks when `tasks` is omitted")
    return_results: bool = Field(default=False)


class EpochResponse(BaseModel):
    status: str
    metrics: Dict[str, Any]
    results: Optional[List[Dict[str, Any]]] = None


class SimilarityRequest(BaseModel):
    query: List[float]
    top_k: int = Field(default=3, gt=0)


class SimilarityResponse(BaseModel):
    matches: List[Dict[str, Any]]
    total: int


class CheckpointResponse(BaseModel):
    status: str
    checkpoint_id: str
    path: str
    state_hash: str
    epoch: int


class RestoreRequest(BaseModel):
    checkpoint_id: Optional[str] = Field(default=None, description="Checkpoint id (latest when omitted)")


class HealthResponse(BaseModel):
    """Health check response"""
    status: str
    version: str
    components: Dict[str, str]


def _require_engine() -> Orchestrator:
    if not engine:
        raise HTTPException(status_code=503, detail="Engine not initialized")
    return engine


def _require_store() -> CheckpointStore:
    if not store:
        raise HTTPException(status_code=503, detail="Checkpoint store not initialized")
    return store


# API Endpoints
@app.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint"""
    components = {
        "engine": "healthy" if engine else "not_initialized",
        "checkpoint_store": "healthy" if store else "not_initialized",
    }
    all_healthy = all(status == "healthy" for status in components.values())

    return HealthResponse(
        status="healthy" if all_healthy else "degraded",
        version=SERVICE_VERSION,
        components=components
    )


@app.get("/status")
async def get_status():
    """Current engine state"""
    return _require_engine().status()


@app.post("/epochs", response_model=EpochResponse)
def run_epoch(request: EpochRequest):
    """Run one epoch (task phase + consolidation)"""
    current = _require_engine()

    if request.tasks is not None:
        tasks = [Task(**t.model_dump()) for t in request.tasks]
    else:
        tasks = [
            Task(**payload)
            for payload in generate_curriculum_tasks(
                request.synthetic_count,
                current.curriculum_level,
                rng=current.rng,
            )
        ]

    try:
        metrics = current.run_epoch(tasks)
    except ConfigurationError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except EngineError as e:
        raise HTTPException(status_code=409, detail=str(e))
    results = current.last_results

    return EpochResponse(
        status="completed",
        metrics=metrics.to_dict(),
        results=[r.to_dict() for r in results] if request.return_results else None,
    )


@app.post("/patterns/similar", response_model=SimilarityResponse)
async def find_similar(request: SimilarityRequest):
    """Rank stored patterns against a query vector"""
    current = _require_engine()
    try:
        matches = current.find_similar(request.query, request.top_k)
    except ConfigurationError as e:
        raise HTTPException(status_code=422, detail=str(e))

    payload = [
        {"quality": m.quality, "similarity": m.similarity, "centroid": m.centroid.tolist()}
        for m in matches
    ]
    return SimilarityResponse(matches=payload, total=len(payload))


@app.get("/metrics")
async def get_metrics():
    """Per-epoch metrics history"""
    current = _require_engine()
    return {
        "model_name": current.config.model_name,
        "epochs": len(current.history),
        "history": [m.to_dict() for m in current.history],
    }


@app.get("/metrics/prometheus")
async def prometheus_metrics():
    """Prometheus exposition"""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


@app.post("/checkpoints", response_model=CheckpointResponse)
def save_checkpoint():
    """Snapshot the engine and register the checkpoint"""
    current = _require_engine()
    checkpoints = _require_store()

    snapshot = current.checkpoint()
    try:
        path = checkpoints.save(snapshot)
    except CheckpointError as e:
        logger.error(f"Checkpoint save failed: {e}")
        raise HTTPException(status_code=500, detail=str(e))

    return CheckpointResponse(
        status="saved",
        checkpoint_id=snapshot.checkpoint_id,
        path=path,
        state_hash=snapshot.state_hash,
        epoch=snapshot.epoch,
    )


@app.get("/checkpoints")
async def list_checkpoints():
    """List registered checkpoints"""
    checkpoints = _require_store()
    try:
        entries = checkpoints.list_checkpoints()
        registry = checkpoints.get_registry()
    except CheckpointError as e:
        raise HTTPException(status_code=500, detail=str(e))

    return {
        "checkpoints": entries,
        "total": len(entries),
        "latest_checkpoint": registry.get("latest_checkpoint"),
        "known_good_checkpoint": registry.get("known_good_checkpoint"),
    }


@app.post("/checkpoints/restore")
def restore_checkpoint(request: RestoreRequest):
    """Restore engine state from a registered checkpoint"""
    current = _require_engine()
    checkpoints = _require_store()

    try:
        snapshot = checkpoints.load(request.checkpoint_id)
        current.restore(snapshot)
    except IntegrityError as e:
        logger.error(f"Checkpoint integrity check failed: {e}")
        raise HTTPException(
            status_code=409,
            detail={"error": "integrity_error", "expected": e.expected, "actual": e.actual},
        )
    except CheckpointNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except CheckpointError as e:
        logger.error(f"Checkpoint restore failed: {e}")
        raise HTTPException(status_code=500, detail=str(e))

    return {
        "status": "restored",
        "checkpoint_id": snapshot.checkpoint_id,
        "epoch": current.epoch,
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        app,
        host=os.getenv("CONTINUAL_ENGINE_HOST", "0.0.0.0"),
        port=int(os.getenv("CONTINUAL_ENGINE_PORT", "8003")),
        log_level="info"
    )
