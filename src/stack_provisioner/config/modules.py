"""Stack modules: Python callables that expand into resource nodes.

A ``modules:`` entry names a callable (an installed entry point, an
importable ``package.module:function`` or a file next to the config) and
calls it once, or once per instance. Every call returns the nodes of one
copy of a stack; the results are merged into the declared resources.
"""

from __future__ import annotations

import importlib
import importlib.metadata
import importlib.util
import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any, NamedTuple, Self

from pydantic import BaseModel, ConfigDict, Field, model_validator

from stack_provisioner.resources.base import ResourceNode

if TYPE_CHECKING:
    from collections.abc import Callable
    from types import ModuleType

    StackFactory = Callable[..., list[ResourceNode]]

logger = logging.getLogger(__name__)

ENTRY_POINT_GROUP = "stack_provisioner.stacks"


class ModuleExpansionError(Exception):
    """Raised when module resolution or expansion fails."""


class Invocation(NamedTuple):
    label: str
    kwargs: dict[str, Any]


class ModuleSpec(BaseModel):
    """One ``modules:`` entry: a callable plus its keyword arguments.

    ``instances`` calls the module once per key, passing the key as
    ``prefix`` so the generated names do not collide.
    """

    model_config = ConfigDict(extra="forbid")

    call: str
    instances: dict[str, dict[str, Any]] | None = None
    with_: dict[str, Any] | None = Field(default=None, alias="with")

    @model_validator(mode="after")
    def _exactly_one_invocation(self) -> Self:
        if (self.instances is None) == (self.with_ is None):
            msg = "Exactly one of 'instances' or 'with' must be provided"
            raise ValueError(msg)
        return self

    def invocations(self) -> list[Invocation]:
        if self.with_ is not None:
            return [Invocation(self.call, dict(self.with_))]
        return [
            Invocation(f"'{self.call}' instance '{prefix}'", {"prefix": prefix, **params})
            for prefix, params in (self.instances or {}).items()
        ]


class ModuleResolver:
    """Turns ``call`` strings into stack factories, relative to a config directory.

    * ``name`` (no colon): the entry point ``name`` in ``stack_provisioner.stacks``.
    * ``pkg.module:function``: an importable module, or failing that
      ``pkg/module.py`` (or ``pkg/module/__init__.py``) under the config
      directory. ``sys.path`` is never touched.

    Each call string is resolved once.
    """

    def __init__(self, config_dir: Path) -> None:
        self.config_dir = config_dir
        self._cache: dict[str, StackFactory] = {}

    def resolve(self, call: str) -> StackFactory:
        if call not in self._cache:
            if ":" in call:
                self._cache[call] = self._from_module(call)
            else:
                self._cache[call] = self._from_entry_point(call)
        return self._cache[call]

    def _from_entry_point(self, name: str) -> StackFactory:
        found = list(importlib.metadata.entry_points(group=ENTRY_POINT_GROUP, name=name))
        if not found:
            raise ModuleExpansionError(
                f"No entry point found for '{name}' in group '{ENTRY_POINT_GROUP}'"
            )
        logger.debug("Module %s resolved to entry point %s", name, found[0].value)
        return found[0].load()

    def _from_module(self, call: str) -> StackFactory:
        module_path, _, attr = call.rpartition(":")
        if not module_path or not attr:
            raise ModuleExpansionError(
                f"Invalid call syntax '{call}': expected 'module.path:function_name'"
            )
        try:
            mod = importlib.import_module(module_path)
        except ModuleNotFoundError as exc:
            # Only a missing top-level module means "look next to the config";
            # a broken import inside an existing module propagates.
            if exc.name is not None and not f"{module_path}.".startswith(f"{exc.name}."):
                raise
            mod = self._from_file(module_path)

        factory = getattr(mod, attr, None)
        if factory is None:
            raise ModuleExpansionError(f"Module has no attribute '{attr}' (from '{call}')")
        if not callable(factory):
            raise ModuleExpansionError(f"'{call}' is not a callable attribute")
        return factory

    def _from_file(self, module_path: str) -> ModuleType:
        base = self.config_dir / Path(*module_path.split("."))
        file_path = next(
            (p for p in (base.with_suffix(".py"), base / "__init__.py") if p.exists()), None
        )
        if file_path is None:
            raise ModuleExpansionError(
                f"Module '{module_path}' not found relative to {self.config_dir}"
            )
        spec = importlib.util.spec_from_file_location(module_path, file_path)
        if spec is None or spec.loader is None:
            raise ModuleExpansionError(f"Failed to create module spec for '{file_path}'")
        mod = importlib.util.module_from_spec(spec)
        spec.loader.exec_module(mod)
        logger.debug("Module %s loaded from %s", module_path, file_path)
        return mod


def _call(factory: StackFactory, invocation: Invocation) -> list[ResourceNode]:
    try:
        result = factory(**invocation.kwargs)
    except ModuleExpansionError:
        raise
    except Exception as exc:
        raise ModuleExpansionError(
            f"Module {invocation.label} raised {type(exc).__name__}: {exc}"
        ) from exc
    if not isinstance(result, list) or not all(isinstance(n, ResourceNode) for n in result):
        raise ModuleExpansionError(f"Module {invocation.label} must return list[ResourceNode]")
    return result


def expand_modules(modules: list[ModuleSpec], config_dir: Path) -> list[ResourceNode]:
    """Expand all module specs into a flat list of nodes.

    Two invocations producing the same node name is an error naming both,
    e.g. an instance whose factory ignores ``prefix``.
    """
    resolver = ModuleResolver(config_dir)
    produced_by: dict[str, str] = {}
    nodes: list[ResourceNode] = []
    for spec in modules:
        factory = resolver.resolve(spec.call)
        for invocation in spec.invocations():
            result = _call(factory, invocation)
            for node in result:
                earlier = produced_by.setdefault(node.name, invocation.label)
                if earlier != invocation.label:
                    raise ModuleExpansionError(
                        f"Node '{node.name}' is produced by both {earlier} and {invocation.label}"
                    )
            logger.debug("Module %s produced %d node(s)", invocation.label, len(result))
            nodes.extend(result)
    return nodes
