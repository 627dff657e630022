"""
Dot-path addressable settings tree.

Paths such as "features.transactions.approveEnabled" or
"limits.maxTasksPerUser" are resolved segment by segment. A path that does not
exist resolves to the `MISSING` sentinel, which is a different state from a
stored `False`. What a missing feature flag means is decided by `OnMissing`.
"""
import copy
import enum
from collections.abc import Iterable, Mapping
from typing import Any, TypeVar

from app.utils import get_logger


log = get_logger(__name__)

T = TypeVar("T")


class _Missing:
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING: Any = _Missing()


class OnMissing(str, enum.Enum):
    """What an undefined feature flag resolves to."""
    PERMIT = "permit"
    DENY = "deny"


def split_path(path: str) -> list[str]:
    segments = [segment for segment in path.split(".") if segment]
    if not segments:
        raise ValueError(f"Invalid settings path: {path!r}")
    return segments


def build_tree(rows: Iterable[tuple[str, Any]]) -> dict[str, Any]:
    """
    Nest category rows into a single tree.

    Shorter keys are applied first, so "features.tasks" refines whatever the
    "features" row holds under "tasks".

    Example:
        >>> build_tree([("features.tasks", {"enabled": False}), ("limits", {"maxTasksPerUser": 5})])
        {'features': {'tasks': {'enabled': False}}, 'limits': {'maxTasksPerUser': 5}}
    """
    tree: dict[str, Any] = {}
    for key, value in sorted(rows, key=lambda row: len(split_path(row[0]))):
        segments = split_path(key)
        node = tree
        for segment in segments[:-1]:
            child = node.get(segment)
            if not isinstance(child, dict):
                child = {}
                node[segment] = child
            node = child
        leaf = segments[-1]
        if isinstance(node.get(leaf), dict) and isinstance(value, dict):
            node[leaf] = _deep_merge(node[leaf], value)
        else:
            node[leaf] = copy.deepcopy(value)
    return tree


def _deep_merge(base: Mapping[str, Any], override: Mapping[str, Any]) -> dict[str, Any]:
    merged = copy.deepcopy(dict(base))
    for key, value in override.items():
        if isinstance(merged.get(key), dict) and isinstance(value, dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


class SettingsTree:
    """
    Read-only view over a nested settings mapping.

    Args:
        data: Nested settings mapping (see `build_tree`)
        on_missing: Resolution of undefined feature flags
    """

    def __init__(self, data: Mapping[str, Any] | None = None, on_missing: OnMissing = OnMissing.PERMIT):
        self._data: Mapping[str, Any] = data or {}
        self.on_missing = OnMissing(on_missing)

    def resolve(self, path: str) -> Any:
        """Return the value at `path` or `MISSING`."""
        node: Any = self._data
        for segment in split_path(path):
            if not isinstance(node, Mapping) or segment not in node:
                return MISSING
            node = node[segment]
        return node

    def get_flag(self, path: str) -> bool:
        """
        Resolve a feature flag.

        An intermediate node whose `enabled` key is False switches off every
        flag below it. An undefined flag resolves according to `on_missing`.
        """
        segments = split_path(path)
        node: Any = self._data
        for index, segment in enumerate(segments):
            if not isinstance(node, Mapping) or segment not in node:
                log.debug(f"Feature flag {path} is undefined, resolving to {self.on_missing.value}")
                return self.on_missing is OnMissing.PERMIT
            node = node[segment]
            is_last = index == len(segments) - 1
            if not is_last and isinstance(node, Mapping) and node.get("enabled") is False:
                return False

        if isinstance(node, bool):
            return node
        if isinstance(node, Mapping):
            enabled = node.get("enabled", MISSING)
            if enabled is MISSING:
                return self.on_missing is OnMissing.PERMIT
            return bool(enabled)
        return bool(node)

    def get_limit(self, path: str, default: T) -> float | T:
        """Resolve a numeric limit, falling back to `default` when absent or not numeric."""
        value = self.resolve(path)
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            if value is not MISSING:
                log.warning(f"Ignoring non-numeric limit {path}={value!r}")
            return default
        return value

    def get_policy(self, path: str, default: T) -> Any:
        """
        Resolve a policy value.

        When both the stored value and the default are objects, stored keys
        override the default keys.
        """
        value = self.resolve(path)
        if value is MISSING:
            return copy.deepcopy(default)
        if isinstance(value, Mapping) and isinstance(default, Mapping):
            return _deep_merge(default, value)
        return copy.deepcopy(value)

    def get_value(self, path: str, default: Any = None) -> Any:
        value = self.resolve(path)
        return default if value is MISSING else value

    def as_dict(self) -> dict[str, Any]:
        return copy.deepcopy(dict(self._data))
