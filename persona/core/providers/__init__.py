"""Provider adapter registry."""

from __future__ import annotations

import importlib
from typing import TYPE_CHECKING, Any, Type, cast

from persona.core.config import ProviderKind
from persona.utils.log import get_logger

if TYPE_CHECKING:  # pragma: no cover - type checking only
    from persona.core.providers.base import ProviderAdapter

logger = get_logger()

_ADAPTERS = {
    ProviderKind.NATIVE_STREAMING: ("gemini", "GeminiAdapter"),
    ProviderKind.GENERIC_COMPATIBLE: ("openai_compatible", "OpenAICompatibleAdapter"),
}


def load_adapter_class(kind: ProviderKind) -> Type["ProviderAdapter"]:
    """Import the adapter class for a provider kind on first use."""
    try:
        module_name, cls_name = _ADAPTERS[kind]
    except KeyError:
        logger.warning("[providers] Unsupported provider kind", extra={"kind": str(kind)})
        raise ValueError(f"Unsupported provider kind: {kind!r}") from None
    mod = importlib.import_module(f"persona.core.providers.{module_name}")
    adapter_cls = getattr(mod, cls_name, None)
    if adapter_cls is None:
        raise ImportError(f"{cls_name} not found in {module_name}")
    return cast(Type["ProviderAdapter"], adapter_cls)


def get_adapter(kind: ProviderKind, **kwargs: Any) -> "ProviderAdapter":
    """Instantiate the adapter for ``kind`` with adapter-specific arguments."""
    return load_adapter_class(kind)(**kwargs)


__all__ = ["get_adapter", "load_adapter_class"]
