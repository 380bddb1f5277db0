"""Engine registry mapping string keys to validated engine bundles.

A key encodes its role as the prefix before the first underscore
(``split_random`` is a split engine, ``execution_basic_sequential`` an execution
engine). Registration validates the bundle against the role contract in
:mod:`flowengine.engines.validation`; a bundle that fails is logged and skipped
rather than raising, so one broken plugin does not take the process down.
"""

from __future__ import annotations

from collections import defaultdict
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Union

from ..core.exceptions import EngineNotFound, EngineValidationError
from ..core.logging import get_logger
from .validation import role_of, validate_engine

LOGGER = get_logger(__name__)

__all__ = [
    "DEFAULT_REGISTRY",
    "EngineBundle",
    "EngineRegistry",
    "create_registry",
    "current_registry",
    "get_default_registry",
    "use_registry",
]

_BUNDLE_FIELDS = ("wrapper", "engine", "default_params")


@dataclass(frozen=True)
class EngineBundle:
    """The three callables that make up an engine."""

    wrapper: Callable[..., Any]
    engine: Callable[..., Any]
    default_params: Callable[[], Mapping[str, Any]]

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any], *, key: str = "<unnamed>") -> "EngineBundle":
        missing = [name for name in _BUNDLE_FIELDS if not callable(payload.get(name))]
        if missing:
            raise EngineValidationError(
                f"Engine '{key}' is missing callable(s): {', '.join(missing)}",
                metadata={"engine": key, "missing": missing},
            )
        return cls(wrapper=payload["wrapper"], engine=payload["engine"], default_params=payload["default_params"])


class EngineRegistry:
    """In-memory mapping of engine keys to validated bundles."""

    def __init__(self, name: str = "default") -> None:
        self.name = name
        self._engines: Dict[str, EngineBundle] = {}

    def register(self, key: str, candidate: Union[EngineBundle, Mapping[str, Any]]) -> bool:
        """Validate and bind ``candidate`` under ``key``.

        Returns ``True`` when the engine was registered. Validation failures are
        logged as warnings and leave the registry unchanged.
        """

        try:
            bundle = candidate if isinstance(candidate, EngineBundle) else EngineBundle.from_mapping(candidate, key=key)
            validate_engine(key, bundle)
        except EngineValidationError as exc:
            LOGGER.warning(
                "[registry] engine '%s' not registered: %s",
                key,
                exc.message,
                extra={"extra_context": {"event": "engine_registration_failed", **exc.to_dict()}},
            )
            return False

        replaced = key in self._engines
        self._engines[key] = bundle
        LOGGER.info(
            "[registry] engine '%s' registered%s",
            key,
            " (replacing previous binding)" if replaced else "",
            extra={"extra_context": {"event": "engine_registered", "engine": key, "role": role_of(key)}},
        )
        return True

    def unregister(self, key: str) -> None:
        self.lookup(key)
        del self._engines[key]

    def lookup(self, key: str) -> EngineBundle:
        try:
            return self._engines[key]
        except KeyError:
            raise EngineNotFound(
                f"Engine '{key}' is not registered in registry '{self.name}'",
                metadata={"engine": key, "available": sorted(self._engines)},
            ) from None

    def wrapper(self, key: str) -> Callable[..., Any]:
        return self.lookup(key).wrapper

    def __getitem__(self, key: str) -> Callable[..., Any]:
        return self.wrapper(key)

    def __contains__(self, key: object) -> bool:
        return key in self._engines

    def __len__(self) -> int:
        return len(self._engines)

    def __iter__(self) -> Iterator[str]:
        return iter(sorted(self._engines))

    def keys(self) -> List[str]:
        return sorted(self._engines)

    def list(self, role: Optional[str] = None) -> Union[List[str], Dict[str, Dict[str, EngineBundle]]]:
        """Keys of one role, or every bundle grouped by role."""

        if role is not None:
            prefix = f"{role}_"
            return sorted(key for key in self._engines if key.startswith(prefix))
        grouped: Dict[str, Dict[str, EngineBundle]] = defaultdict(dict)
        for key in sorted(self._engines):
            grouped[role_of(key)][key] = self._engines[key]
        return dict(grouped)


def create_registry(name: str = "default", *, include_builtins: bool = True) -> EngineRegistry:
    """Construct a registry, optionally pre-populated with the built-in engines."""

    registry = EngineRegistry(name)
    if include_builtins:
        from .builtin import register_builtin_engines

        register_builtin_engines(registry)
    return registry


DEFAULT_REGISTRY = EngineRegistry("default")
_DEFAULT_LOADED = False
_ACTIVE: Optional[EngineRegistry] = None


def get_default_registry() -> EngineRegistry:
    """Return the process-wide registry, registering the built-ins on first use."""

    global _DEFAULT_LOADED
    if not _DEFAULT_LOADED:
        _DEFAULT_LOADED = True
        from .builtin import register_builtin_engines

        register_builtin_engines(DEFAULT_REGISTRY)
    return DEFAULT_REGISTRY


def current_registry() -> EngineRegistry:
    """Registry that execution engines dispatch through."""

    return _ACTIVE if _ACTIVE is not None else get_default_registry()


@contextmanager
def use_registry(registry: Optional[EngineRegistry]) -> Iterator[EngineRegistry]:
    """Make ``registry`` the active one for the duration of the block."""

    global _ACTIVE
    previous = _ACTIVE
    _ACTIVE = registry if registry is not None else current_registry()
    try:
        yield _ACTIVE
    finally:
        _ACTIVE = previous
