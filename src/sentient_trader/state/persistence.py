from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Callable, Optional, Protocol
import time

from sentient_trader.core.config import MemoryConfig, PipelineConfig
from sentient_trader.core.rng import RandomSource
from sentient_trader.core.types import stable_json
from sentient_trader.engines.memory import MemoryStore
from sentient_trader.engines.pipeline import InferencePipeline
from sentient_trader.engines.sentient import EmotionalVector

logger = logging.getLogger(__name__)


class Repository(Protocol):
    """Synchronous load/save of one flat record. Single writer assumed."""

    def load(self) -> Optional[Any]:
        ...

    def save(self, data: Any) -> None:
        ...


class JsonFileRepository:
    """
    One JSON document per file.
    - load() returns None when the file does not exist; raises on unreadable JSON
    - save() writes a sibling temp file then renames over the target
    Intended for SIM / local use; not optimized for concurrency.
    """

    def __init__(self, path: str):
        self.path = Path(path)

    def load(self) -> Optional[Any]:
        if not self.path.exists():
            return None
        with self.path.open("r", encoding="utf-8") as f:
            return json.load(f)

    def save(self, data: Any) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        with tmp.open("w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
        os.replace(tmp, self.path)


class InMemoryRepository:
    """Keeps a serialized copy so callers never share mutable state with it."""

    def __init__(self, data: Any = None):
        self._blob: Optional[str] = stable_json(data) if data is not None else None

    def load(self) -> Optional[Any]:
        return json.loads(self._blob) if self._blob is not None else None

    def save(self, data: Any) -> None:
        self._blob = stable_json(data)


class EngineStateStore:
    """
    The three independent durable records of the engine, under one directory:
    - memory.json: flat list of engrams
    - emotion.json: emotional vector
    - pipeline.json: grown network (stages + generation)
    """

    def __init__(self, root: str = "data"):
        self.root = Path(root)
        self.memory = JsonFileRepository(str(self.root / "memory.json"))
        self.emotion = JsonFileRepository(str(self.root / "emotion.json"))
        self.pipeline = JsonFileRepository(str(self.root / "pipeline.json"))


# Loaders: corrupt or unreadable blobs reset to an empty/default state.
_LOAD_ERRORS = (OSError, ValueError, KeyError, TypeError, AttributeError)


def load_memory_store(repo: Repository, config: Optional[MemoryConfig] = None,
                      clock: Callable[[], float] = time.time) -> MemoryStore:
    try:
        data = repo.load()
        if data is None:
            return MemoryStore(config=config, clock=clock)
        return MemoryStore.from_records(data, config=config, clock=clock)
    except _LOAD_ERRORS as e:
        logger.warning(f"Could not load memory store, starting empty: {e}")
        return MemoryStore(config=config, clock=clock)


def save_memory_store(repo: Repository, store: MemoryStore) -> None:
    repo.save(store.to_records())


def load_emotional_vector(repo: Repository) -> EmotionalVector:
    try:
        data = repo.load()
        return EmotionalVector.from_dict(data) if data is not None else EmotionalVector()
    except _LOAD_ERRORS as e:
        logger.warning(f"Could not load emotional vector, using defaults: {e}")
        return EmotionalVector()


def save_emotional_vector(repo: Repository, vector: EmotionalVector) -> None:
    repo.save(vector.to_dict())


def load_pipeline(repo: Repository, config: Optional[PipelineConfig] = None,
                  rng: Optional[RandomSource] = None) -> InferencePipeline:
    try:
        data = repo.load()
        if data is not None:
            return InferencePipeline.from_dict(data, config=config, rng=rng)
    except (*_LOAD_ERRORS, RuntimeError) as e:
        logger.warning(f"Could not load pipeline, building a fresh one: {e}")
    return InferencePipeline(config=config, rng=rng)


def save_pipeline(repo: Repository, pipeline: InferencePipeline) -> None:
    repo.save(pipeline.to_dict())
