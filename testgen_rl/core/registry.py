"""
Model version registry.

Reward records are stamped with the tag of the model that produced the
workflow's outputs. The registry is handed to the orchestrator explicitly
rather than living in a module-level singleton, so a process can swap in an
externally persisted implementation.
"""

from __future__ import annotations

import re
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

_VERSION_SUFFIX = re.compile(r"^(?P<prefix>.*-v)(?P<major>\d+)(?:\.(?P<minor>\d+))?$")


@dataclass(frozen=True)
class ModelVersion:
    """A registered model version."""

    tag: str
    registered_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    info: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tag": self.tag,
            "registered_at": self.registered_at.isoformat(),
            "info": dict(self.info),
        }


class ModelRegistry(ABC):
    """Abstract store of model versions."""

    @abstractmethod
    def current_version(self) -> str:
        """Tag of the model currently producing outputs."""
        pass

    @abstractmethod
    def register_version(self, tag: str, activate: bool = True, **info: Any) -> ModelVersion:
        """Record a new version, optionally making it current."""
        pass

    @abstractmethod
    def get(self, tag: str) -> Optional[ModelVersion]:
        pass

    @abstractmethod
    def versions(self) -> List[ModelVersion]:
        """All versions, oldest first."""
        pass

    def next_version_tag(self) -> str:
        """Tag following the current one (``...-v1.0`` -> ``...-v1.1``)."""
        current = self.current_version()
        match = _VERSION_SUFFIX.match(current)
        if match is None:
            return f"{current}-v1.1"
        minor = int(match.group("minor") or 0) + 1
        return f"{match.group('prefix')}{match.group('major')}.{minor}"


class InMemoryModelRegistry(ModelRegistry):
    """Per-process registry."""

    def __init__(self, initial_version: str):
        self._lock = threading.Lock()
        self._versions: Dict[str, ModelVersion] = {}
        self._current = initial_version
        self._versions[initial_version] = ModelVersion(tag=initial_version)

    def current_version(self) -> str:
        with self._lock:
            return self._current

    def register_version(self, tag: str, activate: bool = True, **info: Any) -> ModelVersion:
        if not tag:
            raise ValueError("model version tag must not be empty")
        with self._lock:
            if tag in self._versions:
                raise ValueError(f"model version already registered: {tag}")
            version = ModelVersion(tag=tag, info=info)
            self._versions[tag] = version
            if activate:
                self._current = tag
            return version

    def get(self, tag: str) -> Optional[ModelVersion]:
        with self._lock:
            return self._versions.get(tag)

    def versions(self) -> List[ModelVersion]:
        with self._lock:
            return list(self._versions.values())
