"""
jpql_lab.db.schema

Table generation from entity metadata.

Responsibilities:
- Build one SQLAlchemy `Table` per inheritance root (single-table inheritance).
- Convert entity instances to rows and rows back to attribute values.
- Apply a persistence unit's schema action (create / create-drop / update / none).
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Engine,
    Float,
    ForeignKey,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
)
from sqlalchemy import Column as SAColumn
from sqlalchemy.types import TypeEngine

from jpql_lab.persistence.errors import TransientEntityError
from jpql_lab.persistence.mapping import (
    Attribute,
    Column,
    Embedded,
    EntityMeta,
    EntityRegistry,
    Id,
    LazyReference,
    ManyToOne,
    meta_of,
)
from jpql_lab.settings import SchemaAction

DISCRIMINATOR = "dtype"

_SA_TYPES: dict[type, type[TypeEngine[Any]]] = {
    bool: Boolean,
    int: Integer,
    float: Float,
    str: String,
    Decimal: Numeric,
    datetime: DateTime,
    date: Date,
}


def _sa_type(python_type: type) -> TypeEngine[Any]:
    if issubclass(python_type, enum.Enum):
        # Enums are stored by constant name.
        return String(64)
    for candidate, sa_type in _SA_TYPES.items():
        if issubclass(python_type, candidate):
            return sa_type()
    raise TypeError(f"no column type for {python_type!r}")


@dataclass(frozen=True, slots=True)
class ColumnMapping:
    attribute: str
    column: str
    python_type: type
    field: str | None = None


def _column_mappings(attr: Attribute) -> list[ColumnMapping]:
    if isinstance(attr, (Id, Column)):
        return [ColumnMapping(attr.name, attr.name, attr.python_type)]
    if isinstance(attr, Embedded):
        return [
            ColumnMapping(attr.name, f"{attr.name}_{field}", python_type, field)
            for field, python_type in attr.fields().items()
        ]
    if isinstance(attr, ManyToOne):
        return [ColumnMapping(attr.name, attr.column_name, int)]
    raise TypeError(f"unsupported attribute {attr!r}")


def _to_storage(value: Any) -> Any:
    if isinstance(value, enum.Enum):
        return value.name
    return value


def _from_storage(value: Any, python_type: type) -> Any:
    if value is not None and issubclass(python_type, enum.Enum):
        return python_type[value]
    return value


class TableMapping:
    def __init__(self, root: EntityMeta, metadata: MetaData) -> None:
        self.root = root
        self.polymorphic = bool(root.subtypes)
        self._by_discriminator = {meta.name: meta for meta in root.hierarchy()}

        self.columns: dict[str, ColumnMapping] = {}
        sa_columns: list[SAColumn[Any]] = []
        for meta in root.hierarchy():
            for attr in meta.attributes.values():
                for cm in _column_mappings(attr):
                    if cm.column in self.columns:
                        continue
                    self.columns[cm.column] = cm
                    sa_columns.append(self._sa_column(attr, cm))
        if self.polymorphic:
            sa_columns.append(SAColumn(DISCRIMINATOR, String(31), nullable=False, index=True))
        self.table = Table(root.table_name, metadata, *sa_columns)

    @property
    def id_column(self) -> str:
        return self.root.id_attribute.name

    @staticmethod
    def _sa_column(attr: Attribute, cm: ColumnMapping) -> SAColumn[Any]:
        if isinstance(attr, Id):
            return SAColumn(cm.column, Integer, primary_key=True, autoincrement=False)
        if isinstance(attr, ManyToOne):
            target = attr.target.root
            return SAColumn(
                cm.column,
                Integer,
                ForeignKey(f"{target.table_name}.{target.id_attribute.name}"),
                nullable=True,
            )
        length = getattr(attr, "length", None)
        sa_type = String(length) if cm.python_type is str and length else _sa_type(cm.python_type)
        return SAColumn(cm.column, sa_type, nullable=getattr(attr, "nullable", True))

    def discriminators(self, meta: EntityMeta) -> list[str]:
        return [m.name for m in meta.hierarchy()]

    def to_row(self, instance: Any, only: set[str] | None = None) -> dict[str, Any]:
        meta = meta_of(instance)
        values = instance.__dict__
        row: dict[str, Any] = {}
        for column, cm in self.columns.items():
            if only is not None and cm.attribute not in only:
                continue
            if cm.attribute not in meta.attributes:
                if only is None:
                    row[column] = None
                continue
            value = values.get(cm.attribute)
            if cm.field is not None:
                row[column] = _to_storage(getattr(value, cm.field)) if value is not None else None
            elif isinstance(meta.attributes[cm.attribute], ManyToOne):
                row[column] = _reference_id(instance, cm.attribute, value)
            else:
                row[column] = _to_storage(value)
        if self.polymorphic and only is None:
            row[DISCRIMINATOR] = meta.name
        return row

    def from_row(self, row: Any) -> tuple[EntityMeta, dict[str, Any]]:
        meta = self._by_discriminator[row[DISCRIMINATOR]] if self.polymorphic else self.root
        values: dict[str, Any] = {}
        embedded: dict[str, dict[str, Any]] = {}
        for column, cm in self.columns.items():
            attr = meta.attributes.get(cm.attribute)
            if attr is None:
                continue
            raw = row[column]
            if cm.field is not None:
                embedded.setdefault(cm.attribute, {})[cm.field] = _from_storage(raw, cm.python_type)
            elif isinstance(attr, ManyToOne):
                values[cm.attribute] = LazyReference(attr.target, raw) if raw is not None else None
            else:
                values[cm.attribute] = _from_storage(raw, cm.python_type)
        for name, fields in embedded.items():
            attr = meta.attributes[name]
            is_empty = all(v is None for v in fields.values())
            values[name] = None if is_empty else attr.python_type(**fields)
        return meta, values


def _reference_id(owner: Any, name: str, value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, LazyReference):
        return value.id
    ident = value.__dict__.get(meta_of(value).id_attribute.name)
    if ident is None:
        raise TransientEntityError(
            f"{type(owner).__name__}.{name} references an unsaved {type(value).__name__}; "
            "persist it before flushing"
        )
    return ident


class Schema:
    def __init__(self, entities: EntityRegistry) -> None:
        self.metadata = MetaData()
        self._tables = {root.name: TableMapping(root, self.metadata) for root in entities.roots()}

    def mapping_for(self, meta: EntityMeta) -> TableMapping:
        return self._tables[meta.root.name]

    def mappings(self) -> list[TableMapping]:
        return list(self._tables.values())

    def apply(self, engine: Engine, action: SchemaAction) -> None:
        if action in ("create", "create-drop"):
            self.metadata.drop_all(engine)
            self.metadata.create_all(engine)
        elif action == "update":
            self.metadata.create_all(engine, checkfirst=True)

    def drop(self, engine: Engine) -> None:
        self.metadata.drop_all(engine)


# --- Module Notes -----------------------------------------------------------
# "update" only creates missing tables; altering existing ones is migration work and
# out of scope for this runtime.
