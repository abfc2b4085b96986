"""
jpql_lab.persistence.mapping

Entity metadata: declarative attributes, entity registry and per-instance state.

Responsibilities:
- Declare entity attributes (`Id`, `Column`, `Embedded`, `ManyToOne`) as descriptors.
- Register every `Entity` subclass (with its inheritance root) in a registry.
- Record mutations of managed instances with the owning entity manager.
- Resolve lazy association references on first access.
"""

from __future__ import annotations

import dataclasses
import enum
import types
import typing
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, ClassVar, Union

from jpql_lab.persistence.errors import IllegalStateError, LazyInitializationError

if TYPE_CHECKING:
    from jpql_lab.persistence.context import EntityManager

_STATE_KEY = "_entity_state"


class FetchType(enum.StrEnum):
    eager = "EAGER"
    lazy = "LAZY"


class EntityStatus(enum.StrEnum):
    new = "NEW"
    managed = "MANAGED"
    removed = "REMOVED"
    detached = "DETACHED"


@dataclass(slots=True)
class EntityState:
    status: EntityStatus = EntityStatus.new
    manager: EntityManager | None = None


@dataclass(frozen=True, slots=True)
class LazyReference:
    """Placeholder for a many-to-one target that has not been loaded yet."""

    target: EntityMeta
    id: Any


def state_of(instance: Any) -> EntityState:
    return instance.__dict__[_STATE_KEY]


def set_state(instance: Any, state: EntityState) -> None:
    instance.__dict__[_STATE_KEY] = state


def unwrap_optional(hint: Any) -> Any:
    # `X | None` and Optional[X] both reduce to X; other unions are returned unchanged.
    origin = typing.get_origin(hint)
    if origin in (Union, types.UnionType):
        args = [a for a in typing.get_args(hint) if a is not type(None)]
        if len(args) == 1:
            return args[0]
    return hint


class Attribute:
    kind: ClassVar[str] = "attribute"

    def __init__(self, *, default: Any = None) -> None:
        self.default = default
        self.name = ""
        self.owner: type | None = None

    def __set_name__(self, owner: type, name: str) -> None:
        self.name = name
        self.owner = owner

    def initial_value(self) -> Any:
        return self.default

    def __get__(self, instance: Any, owner: type | None = None) -> Any:
        if instance is None:
            return self
        return instance.__dict__.get(self.name, self.default)

    def __set__(self, instance: Any, value: Any) -> None:
        instance.__dict__[self.name] = value
        _record_mutation(instance, self.name)


class Id(Attribute):
    kind = "id"
    python_type: type = int

    def __set__(self, instance: Any, value: Any) -> None:
        current = instance.__dict__.get(self.name)
        if current is not None and current != value:
            raise IllegalStateError(
                f"identifier of {type(instance).__name__} is immutable (current={current!r})"
            )
        instance.__dict__[self.name] = value


class Column(Attribute):
    kind = "column"

    def __init__(
        self,
        python_type: type,
        *,
        default: Any = None,
        nullable: bool = True,
        length: int | None = None,
    ) -> None:
        super().__init__(default=default)
        self.python_type = python_type
        self.nullable = nullable
        self.length = length


class Embedded(Attribute):
    """A value object (frozen dataclass) flattened into the owner's table."""

    kind = "embedded"

    def __init__(self, value_type: type, *, default: Any = None) -> None:
        if not dataclasses.is_dataclass(value_type):
            raise TypeError(f"embeddable {value_type!r} must be a dataclass")
        super().__init__(default=default)
        self.python_type = value_type

    def fields(self) -> dict[str, type]:
        hints = typing.get_type_hints(self.python_type)
        return {f.name: unwrap_optional(hints[f.name]) for f in dataclasses.fields(self.python_type)}


class ManyToOne(Attribute):
    kind = "many_to_one"

    def __init__(
        self,
        target: str | type,
        *,
        fetch: FetchType = FetchType.eager,
        join_column: str | None = None,
    ) -> None:
        super().__init__(default=None)
        self._target = target
        self.fetch = fetch
        self.join_column = join_column

    @property
    def target(self) -> EntityMeta:
        # Targets may be declared by name to allow forward references.
        if isinstance(self._target, str):
            return registry.get(self._target)
        return meta_of(self._target)

    @property
    def python_type(self) -> type:
        return self.target.cls

    @property
    def column_name(self) -> str:
        return self.join_column or f"{self.name}_id"

    def __get__(self, instance: Any, owner: type | None = None) -> Any:
        if instance is None:
            return self
        value = instance.__dict__.get(self.name)
        if isinstance(value, LazyReference):
            value = _resolve_reference(instance, self.name, value)
        return value


def _record_mutation(instance: Any, name: str) -> None:
    state: EntityState | None = instance.__dict__.get(_STATE_KEY)
    if state is not None and state.status is EntityStatus.managed and state.manager is not None:
        state.manager._record_mutation(instance, name)


def _resolve_reference(instance: Any, name: str, ref: LazyReference) -> Any:
    state = state_of(instance)
    manager = state.manager
    if state.status is not EntityStatus.managed or manager is None or not manager.is_open:
        raise LazyInitializationError(
            f"could not initialize {type(instance).__name__}.{name}: no open persistence context"
        )
    target = manager._resolve_reference(ref)
    instance.__dict__[name] = target
    return target


@dataclass(eq=False)
class EntityMeta:
    cls: type
    name: str
    parent: EntityMeta | None
    attributes: dict[str, Attribute]
    table_name: str
    subtypes: list[EntityMeta] = dataclasses.field(default_factory=list)

    @property
    def root(self) -> EntityMeta:
        meta = self
        while meta.parent is not None:
            meta = meta.parent
        return meta

    @property
    def id_attribute(self) -> Id:
        for attr in self.attributes.values():
            if isinstance(attr, Id):
                return attr
        raise TypeError(f"entity {self.name} declares no Id attribute")

    def is_subtype_of(self, other: EntityMeta) -> bool:
        meta: EntityMeta | None = self
        while meta is not None:
            if meta is other:
                return True
            meta = meta.parent
        return False

    def hierarchy(self) -> list[EntityMeta]:
        """This entity and every subtype, depth first."""

        out = [self]
        for sub in self.subtypes:
            out.extend(sub.hierarchy())
        return out

    def key(self, ident: Any) -> tuple[str, Any]:
        return (self.root.name, ident)

    def __repr__(self) -> str:
        return f"EntityMeta({self.name})"


class EntityRegistry:
    def __init__(self) -> None:
        self._by_name: dict[str, EntityMeta] = {}

    def register(self, cls: type, *, name: str) -> EntityMeta:
        if name in self._by_name and self._by_name[name].cls is not cls:
            raise TypeError(f"entity name {name!r} is already registered")
        parent = next(
            (meta_of(base) for base in cls.__mro__[1:] if "__entity_meta__" in vars(base)),
            None,
        )
        attributes: dict[str, Attribute] = {}
        for klass in reversed(cls.__mro__):
            for attr_name, value in vars(klass).items():
                if isinstance(value, Attribute):
                    attributes[attr_name] = value
        table_name = (
            parent.root.table_name
            if parent is not None
            else vars(cls).get("__tablename__", name.lower())
        )
        meta = EntityMeta(
            cls=cls, name=name, parent=parent, attributes=attributes, table_name=table_name
        )
        if parent is not None:
            parent.subtypes.append(meta)
        self._by_name[name] = meta
        cls.__entity_meta__ = meta
        return meta

    def get(self, name: str) -> EntityMeta:
        return self._by_name[name]

    def find(self, name: str) -> EntityMeta | None:
        return self._by_name.get(name)

    def roots(self) -> list[EntityMeta]:
        return [m for m in self._by_name.values() if m.parent is None]

    def __iter__(self):
        return iter(self._by_name.values())


registry = EntityRegistry()


def meta_of(cls_or_instance: Any) -> EntityMeta:
    cls = cls_or_instance if isinstance(cls_or_instance, type) else type(cls_or_instance)
    meta = vars(cls).get("__entity_meta__")
    if meta is None:
        raise TypeError(f"{cls.__name__} is not an entity")
    return meta


def is_entity(value: Any) -> bool:
    return isinstance(value, Entity)


class Entity:
    """
    Base class for entities.

    Subclasses declare attributes as class-level descriptors and are registered on
    definition. Pass `entity_name=` in the class statement to override the JPQL name.
    """

    __entity_meta__: ClassVar[EntityMeta]

    def __init_subclass__(cls, *, entity_name: str | None = None, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)
        registry.register(cls, name=entity_name or cls.__name__)

    def __init__(self, **values: Any) -> None:
        meta = meta_of(self)
        self.__dict__[_STATE_KEY] = EntityState()
        for name, attr in meta.attributes.items():
            self.__dict__[name] = attr.initial_value()
        for name, value in values.items():
            if name not in meta.attributes:
                raise TypeError(f"{meta.name} has no attribute {name!r}")
            setattr(self, name, value)

    def __repr__(self) -> str:
        meta = meta_of(self)
        parts = []
        for name, attr in meta.attributes.items():
            if isinstance(attr, ManyToOne):
                continue
            parts.append(f"{name}={self.__dict__.get(name)!r}")
        return f"{meta.name}({', '.join(parts)})"


# --- Module Notes -----------------------------------------------------------
# Associations are never rendered by `__repr__` so printing a detached entity cannot
# trigger a lazy load.
