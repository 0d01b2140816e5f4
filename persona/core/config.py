"""Configuration models for Persona.

This module defines the model endpoint records kept by the registry,
the provider protocol families they dispatch on, and the transport
settings used by the streaming client.
"""

import os
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional
from uuid import uuid4

import httpx
from pydantic import BaseModel, ConfigDict, Field, model_validator

from persona.utils.log import get_logger


logger = get_logger()

# Identifier used for native-streaming models that do not name one.
DEFAULT_NATIVE_MODEL = "gemini-2.5-flash"

PLACEHOLDER_PREFIX = "YOUR_"

# Field names used by records persisted from the mobile app.
_LEGACY_FIELD_NAMES = {
    "apiKey": "credential",
    "type": "provider_kind",
    "baseUrl": "endpoint_base_url",
    "modelId": "model_identifier",
}


class ProviderKind(str, Enum):
    """Upstream protocol families (not individual model vendors)."""

    NATIVE_STREAMING = "native_streaming"
    GENERIC_COMPATIBLE = "generic_compatible"

    @classmethod
    def _legacy_aliases(cls) -> Dict[str, "ProviderKind"]:
        """Map vendor and legacy labels to protocol families."""
        return {
            "gemini": cls.NATIVE_STREAMING,
            "google": cls.NATIVE_STREAMING,
            "native": cls.NATIVE_STREAMING,
            "openai_compatible": cls.GENERIC_COMPATIBLE,
            "openai-compatible": cls.GENERIC_COMPATIBLE,
            "openai": cls.GENERIC_COMPATIBLE,
            "deepseek": cls.GENERIC_COMPATIBLE,
            "generic": cls.GENERIC_COMPATIBLE,
        }

    @classmethod
    def _missing_(cls, value: object) -> Optional["ProviderKind"]:
        """Accept legacy provider strings by mapping them to their protocol."""
        if isinstance(value, str):
            normalized = value.strip().lower()
            for member in cls:
                if member.value == normalized:
                    return member
            return cls._legacy_aliases().get(normalized)
        return None


def credential_env_candidates(kind: ProviderKind) -> List[str]:
    """Environment variables to check when a credential is not configured."""
    if kind == ProviderKind.NATIVE_STREAMING:
        return ["GEMINI_API_KEY", "GOOGLE_API_KEY"]
    return ["OPENAI_COMPATIBLE_API_KEY", "OPENAI_API_KEY", "DEEPSEEK_API_KEY"]


def is_placeholder_credential(credential: Optional[str]) -> bool:
    if not credential or not credential.strip():
        return True
    value = credential.strip()
    return value.startswith(PLACEHOLDER_PREFIX) and value.endswith("_API_KEY")


def new_model_id() -> str:
    return uuid4().hex


class ModelConfig(BaseModel):
    """A configured model endpoint a user can select."""

    model_config = ConfigDict(protected_namespaces=())

    id: str = Field(default_factory=new_model_id)
    name: str
    credential: str = ""
    provider_kind: ProviderKind
    # Only meaningful for generic-compatible endpoints.
    endpoint_base_url: Optional[str] = None
    # Required for generic-compatible endpoints; native streaming falls back to DEFAULT_NATIVE_MODEL.
    model_identifier: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _migrate_legacy_fields(cls, data: Any) -> Any:
        """Translate records written by the mobile app (apiKey/type/baseUrl/modelId)."""
        if not isinstance(data, dict):
            return data
        data = dict(data)
        for legacy, current in _LEGACY_FIELD_NAMES.items():
            if legacy in data and current not in data:
                data[current] = data.pop(legacy)
        return data

    def missing_fields(self) -> List[str]:
        """Return the fields this provider kind requires that are absent or blank."""
        if self.provider_kind != ProviderKind.GENERIC_COMPATIBLE:
            return []
        missing: List[str] = []
        if not (self.endpoint_base_url or "").strip():
            missing.append("endpoint_base_url")
        if not (self.model_identifier or "").strip():
            missing.append("model_identifier")
        return missing

    def effective_model_identifier(self) -> Optional[str]:
        if self.model_identifier and self.model_identifier.strip():
            return self.model_identifier.strip()
        if self.provider_kind == ProviderKind.NATIVE_STREAMING:
            return DEFAULT_NATIVE_MODEL
        return None

    def resolved_credential(self) -> str:
        """Return the configured credential, falling back to environment variables.

        Seeded entries ship with placeholder keys such as ``YOUR_OPENAI_API_KEY``;
        those are treated as unset so a key exported in the environment is used
        instead.
        """
        if not is_placeholder_credential(self.credential):
            return self.credential.strip()
        for env_var in credential_env_candidates(self.provider_kind):
            value = os.environ.get(env_var)
            if value:
                logger.debug(
                    "[config] Using credential from environment",
                    extra={"model_name": self.name, "env_var": env_var},
                )
                return value
        return self.credential


def default_model_configs() -> List[ModelConfig]:
    """The set seeded into an empty registry on first run."""
    return [
        ModelConfig(
            name="Gemini",
            credential="YOUR_GEMINI_API_KEY",
            provider_kind=ProviderKind.NATIVE_STREAMING,
            model_identifier=DEFAULT_NATIVE_MODEL,
        ),
        ModelConfig(
            name="OpenAI",
            credential="YOUR_OPENAI_API_KEY",
            provider_kind=ProviderKind.GENERIC_COMPATIBLE,
            endpoint_base_url="https://api.openai.com/v1/",
            model_identifier="gpt-3.5-turbo",
        ),
        ModelConfig(
            name="DeepSeek",
            credential="YOUR_DEEPSEEK_API_KEY",
            provider_kind=ProviderKind.GENERIC_COMPATIBLE,
            endpoint_base_url="https://api.deepseek.com/v1/",
            model_identifier="deepseek-chat",
        ),
    ]


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning(
            "[config] Ignoring invalid numeric environment value",
            extra={"env_var": name, "value": raw},
        )
        return default


class StreamSettings(BaseModel):
    """Transport and storage settings for the streaming client."""

    connect_timeout: float = 10.0
    read_timeout: float = 60.0
    write_timeout: float = 10.0
    pool_timeout: float = 10.0
    # Fragments buffered between the producer task and a slow consumer.
    buffer_size: int = Field(default=64, ge=1)
    store_path: Path = Field(default_factory=lambda: Path.home() / ".persona" / "preferences.json")

    def httpx_timeout(self) -> httpx.Timeout:
        return httpx.Timeout(
            connect=self.connect_timeout,
            read=self.read_timeout,
            write=self.write_timeout,
            pool=self.pool_timeout,
        )

    @classmethod
    def from_env(cls) -> "StreamSettings":
        settings = cls()
        store_path = os.getenv("PERSONA_STORE_PATH")
        buffer_raw = os.getenv("PERSONA_STREAM_BUFFER")
        buffer_size = settings.buffer_size
        if buffer_raw:
            try:
                buffer_size = max(1, int(buffer_raw))
            except ValueError:
                logger.warning(
                    "[config] Ignoring invalid numeric environment value",
                    extra={"env_var": "PERSONA_STREAM_BUFFER", "value": buffer_raw},
                )
        return cls(
            connect_timeout=_env_float("PERSONA_CONNECT_TIMEOUT", settings.connect_timeout),
            read_timeout=_env_float("PERSONA_READ_TIMEOUT", settings.read_timeout),
            buffer_size=buffer_size,
            store_path=Path(store_path).expanduser() if store_path else settings.store_path,
        )
