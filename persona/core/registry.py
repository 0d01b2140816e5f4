"""Registry of configured model endpoints.

The registry owns the list of :class:`ModelConfig` records and the current
selection. Mutations update memory synchronously and persist the whole list
to a key-value store in the background, so callers never wait on disk.
"""

from __future__ import annotations

import asyncio
import threading
from collections.abc import Sequence
from typing import Callable, Iterator, List, Optional, Set, overload

from pydantic import TypeAdapter, ValidationError

from persona.core.config import ModelConfig, default_model_configs, new_model_id
from persona.core.store import KeyValueStore
from persona.utils.log import get_logger

logger = get_logger()

MODELS_KEY = "models_json"

_MODEL_LIST = TypeAdapter(List[ModelConfig])


class ModelListView(Sequence):
    """Read-only, live view over the registry's ordered model list."""

    def __init__(self, models: List[ModelConfig]) -> None:
        self._models = models

    @overload
    def __getitem__(self, index: int) -> ModelConfig: ...

    @overload
    def __getitem__(self, index: slice) -> List[ModelConfig]: ...

    def __getitem__(self, index):  # type: ignore[no-untyped-def]
        return self._models[index]

    def __len__(self) -> int:
        return len(self._models)

    def __iter__(self) -> Iterator[ModelConfig]:
        return iter(list(self._models))

    def __repr__(self) -> str:
        return f"ModelListView({[m.name for m in self._models]!r})"


class ModelRegistry:
    """Holds the configured models, enforcing that at least one always exists."""

    def __init__(
        self,
        store: KeyValueStore,
        *,
        key: str = MODELS_KEY,
        id_factory: Callable[[], str] = new_model_id,
    ) -> None:
        self._store = store
        self._key = key
        self._id_factory = id_factory
        self._models: List[ModelConfig] = []
        self._view = ModelListView(self._models)
        self._selected_id: Optional[str] = None
        self._lock = threading.RLock()
        self._write_lock = threading.Lock()
        self._init_lock = asyncio.Lock()
        self._initialized = False
        self._pending: Set[asyncio.Task[None]] = set()

    @property
    def initialized(self) -> bool:
        return self._initialized

    async def initialize(self) -> None:
        """Load persisted models, seeding the defaults on first run."""
        if self._initialized:
            return
        async with self._init_lock:
            if self._initialized:
                return
            raw = await asyncio.to_thread(self._store.get, self._key)
            loaded = self._decode(raw)
            seeded = not loaded
            with self._lock:
                self._models.extend(loaded or default_model_configs())
                self._selected_id = self._models[0].id
                self._initialized = True
            logger.debug(
                "[registry] Initialized model registry",
                extra={"model_count": len(self._models), "seeded": seeded},
            )
            if seeded:
                await asyncio.to_thread(self._save)

    def _decode(self, raw: Optional[str]) -> List[ModelConfig]:
        if raw is None or not raw.strip():
            return []
        try:
            models = _MODEL_LIST.validate_json(raw)
        except (ValidationError, ValueError) as e:
            logger.warning(
                "Error loading persisted models: %s: %s",
                type(e).__name__,
                e,
                extra={"key": self._key},
            )
            return []

        unique: List[ModelConfig] = []
        seen: Set[str] = set()
        for model in models:
            if model.id in seen:
                logger.warning(
                    "[registry] Dropping persisted model with duplicate id",
                    extra={"model_id": model.id, "model_name": model.name},
                )
                continue
            seen.add(model.id)
            unique.append(model)
        return unique

    def _require_initialized(self) -> None:
        if not self._initialized:
            raise RuntimeError("Model registry is not initialized; call initialize() first.")

    def _index_of(self, model_id: str) -> Optional[int]:
        for index, model in enumerate(self._models):
            if model.id == model_id:
                return index
        return None

    def list(self) -> ModelListView:
        """Return the live, insertion-ordered view of all models."""
        return self._view

    def get(self, model_id: str) -> Optional[ModelConfig]:
        with self._lock:
            index = self._index_of(model_id)
            return self._models[index] if index is not None else None

    def find(self, name_or_id: str) -> Optional[ModelConfig]:
        """Look up a model by id, or by a case-insensitive unique name."""
        with self._lock:
            by_id = self.get(name_or_id)
            if by_id is not None:
                return by_id
            lowered = name_or_id.strip().lower()
            matches = [m for m in self._models if m.name.lower() == lowered]
            return matches[0] if len(matches) == 1 else None

    @property
    def selected(self) -> Optional[ModelConfig]:
        with self._lock:
            if self._selected_id is None:
                return None
            return self.get(self._selected_id)

    def select(self, model_id: str) -> ModelConfig:
        with self._lock:
            self._require_initialized()
            model = self.get(model_id)
            if model is None:
                raise KeyError(f"Model '{model_id}' does not exist.")
            self._selected_id = model.id
            return model

    def add(self, config: ModelConfig) -> ModelConfig:
        """Append a copy of ``config`` under a freshly generated id."""
        with self._lock:
            self._require_initialized()
            existing = {m.id for m in self._models}
            new_id = self._id_factory()
            while new_id in existing:
                new_id = self._id_factory()
            entry = config.model_copy(update={"id": new_id}, deep=True)
            self._models.append(entry)
        logger.info(
            "[registry] Added model",
            extra={"model_id": entry.id, "model_name": entry.name, "kind": entry.provider_kind.value},
        )
        self._schedule_persist()
        return entry

    def update(self, config: ModelConfig) -> bool:
        """Replace the model sharing ``config.id``; unknown ids are ignored."""
        with self._lock:
            self._require_initialized()
            index = self._index_of(config.id)
            if index is None:
                logger.debug("[registry] Ignoring update for unknown model", extra={"model_id": config.id})
                return False
            current = self._models[index]
            if config.provider_kind != current.provider_kind:
                raise ValueError(
                    f"Cannot change provider kind of model '{current.name}' "
                    f"from {current.provider_kind.value} to {config.provider_kind.value}; "
                    "remove it and add a new model instead."
                )
            self._models[index] = config.model_copy(deep=True)
        logger.info("[registry] Updated model", extra={"model_id": config.id, "model_name": config.name})
        self._schedule_persist()
        return True

    def remove(self, model_id: str) -> bool:
        """Delete a model unless it is unknown or the last one left."""
        with self._lock:
            self._require_initialized()
            index = self._index_of(model_id)
            if index is None:
                logger.debug("[registry] Ignoring removal of unknown model", extra={"model_id": model_id})
                return False
            if len(self._models) <= 1:
                logger.warning(
                    "[registry] Refusing to remove the last configured model",
                    extra={"model_id": model_id},
                )
                return False
            if self._selected_id == model_id:
                fallback = next(m for m in self._models if m.id != model_id)
                self._selected_id = fallback.id
                logger.debug(
                    "[registry] Selection moved off removed model",
                    extra={"removed": model_id, "selected": fallback.id},
                )
            removed = self._models.pop(index)
        logger.info("[registry] Removed model", extra={"model_id": model_id, "model_name": removed.name})
        self._schedule_persist()
        return True

    def _encode(self) -> str:
        with self._lock:
            snapshot = list(self._models)
        return _MODEL_LIST.dump_json(snapshot).decode("utf-8")

    def _write_snapshot(self) -> None:
        # Serialize under the write lock so the last write always carries the latest state.
        with self._write_lock:
            self._store.set(self._key, self._encode())

    def _save(self) -> None:
        try:
            self._write_snapshot()
        except (OSError, ValueError, TypeError) as e:
            logger.warning(
                "Error persisting models: %s: %s",
                type(e).__name__,
                e,
                extra={"key": self._key},
            )

    async def _persist(self) -> None:
        await asyncio.to_thread(self._save)

    def _schedule_persist(self) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No event loop (plain synchronous caller): write inline.
            self._save()
            return
        task = loop.create_task(self._persist())
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def flush(self) -> None:
        """Wait for every background write scheduled so far."""
        while self._pending:
            await asyncio.gather(*list(self._pending))
