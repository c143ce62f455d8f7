"""Declared resources and the base class for resource kind schemas."""

from enum import Enum
from typing import Any, ClassVar

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_serializer,
    field_validator,
)

from stack_provisioner.resources.refs import (
    AttributeRef,
    collect_refs,
    contains_unknown,
    dump_refs,
    parse_refs,
)


class ReplacementStrategy(str, Enum):
    CREATE_FIRST = "create_first"
    DELETE_FIRST = "delete_first"


class Lifecycle(BaseModel):
    """Per-node lifecycle policy."""

    model_config = ConfigDict(extra="forbid")

    create_before_destroy: bool = False

    @property
    def replacement(self) -> ReplacementStrategy:
        if self.create_before_destroy:
            return ReplacementStrategy.CREATE_FIRST
        return ReplacementStrategy.DELETE_FIRST


class ResourceNode(BaseModel):
    """A declared unit of desired state.

    Nodes are pure data. ``inputs`` and ``triggers`` may hold literals or
    references to attributes of other nodes; the kind's handler knows how to
    CRUD the resource once references are resolved.
    """

    model_config = ConfigDict(extra="forbid")

    kind: str = Field(min_length=1)
    name: str = Field(pattern=r"^[A-Za-z0-9_-]+$")
    inputs: dict[str, Any] = Field(default_factory=dict)
    triggers: list[Any] | None = None
    lifecycle: Lifecycle = Field(default_factory=Lifecycle)

    depends_on: list[str] = []

    @field_validator("inputs", "triggers", mode="before")
    @classmethod
    def _parse_refs(cls, value: Any) -> Any:
        return None if value is None else parse_refs(value)

    @field_serializer("inputs", "triggers")
    def _dump_refs(self, value: Any) -> Any:
        return dump_refs(value)

    def references(self) -> list[AttributeRef]:
        """References declared in inputs and triggers."""
        return collect_refs([self.inputs, self.triggers or []])

    def dependency_names(self) -> list[str]:
        """Names this node depends on: explicit ``depends_on`` plus reference targets."""
        names = list(self.depends_on)
        names.extend(ref.target for ref in self.references())
        return list(dict.fromkeys(names))


class ResourceKind(BaseModel):
    """Input schema of a resource kind.

    Subclasses declare their inputs as fields and the attributes the
    provider returns once the resource exists.
    """

    model_config = ConfigDict(extra="forbid")

    kind: ClassVar[str]
    attributes: ClassVar[frozenset[str]] = frozenset({"id"})
    # Attributes that change on every in-place update (unknown until applied).
    volatile_attributes: ClassVar[frozenset[str]] = frozenset()

    @classmethod
    def computed_attributes(cls, inputs: dict[str, Any]) -> dict[str, Any]:
        """Attributes derivable from resolved *inputs* without calling the provider.

        Values that cannot be derived yet are simply omitted.
        """
        _ = inputs
        return {}

    @classmethod
    def check_inputs(cls, inputs: dict[str, Any]) -> list[str]:
        """Return error messages for *inputs* (empty = valid).

        Field names are always checked. Values are type-checked only when no
        references or unknowns remain.
        """
        errors = [f"unknown input '{k}'" for k in sorted(set(inputs) - set(cls.model_fields))]
        errors.extend(
            f"missing required input '{name}'"
            for name, fi in cls.model_fields.items()
            if fi.is_required() and name not in inputs
        )
        if errors or collect_refs(inputs) or contains_unknown(inputs):
            return errors
        try:
            cls.model_validate(inputs)
        except ValidationError as exc:
            for err in exc.errors():
                loc = ".".join(str(p) for p in err["loc"])
                errors.append(f"input '{loc}': {err['msg']}")
        return errors
