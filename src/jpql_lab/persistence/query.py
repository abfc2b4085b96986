"""
jpql_lab.persistence.query

Executable queries created by an entity manager.

Responsibilities:
- Hold parameter bindings and the result window (first result / max results).
- Validate bindings against the parameters the compiled query declares.
- Enforce the result-cardinality contract of `get_single_result()`.
- Check result types for `TypedQuery`.
"""

from __future__ import annotations

from collections.abc import Iterator
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from jpql_lab.jpql.compiler import CompiledQuery
from jpql_lab.persistence.errors import (
    IllegalArgumentError,
    NonUniqueResultError,
    NoResultError,
    ParameterBindingError,
    QueryResultTypeError,
)

if TYPE_CHECKING:
    from jpql_lab.persistence.context import EntityManager

T = TypeVar("T")


class Query:
    def __init__(self, manager: EntityManager, compiled: CompiledQuery) -> None:
        self._manager = manager
        self._compiled = compiled
        self._bindings: dict[str | int, Any] = {}
        self._first_result = 0
        self._max_results: int | None = None

    @property
    def text(self) -> str:
        return self._compiled.text

    @property
    def parameters(self) -> frozenset[str | int]:
        return self._compiled.parameters

    @property
    def first_result(self) -> int:
        return self._first_result

    @property
    def max_results(self) -> int | None:
        return self._max_results

    def set_parameter(self, key: str | int, value: Any):
        self._bindings[key] = value
        return self

    def set_first_result(self, start_position: int):
        if start_position < 0:
            raise IllegalArgumentError(f"first result must be >= 0, got {start_position}")
        self._first_result = start_position
        return self

    def set_max_results(self, max_result: int):
        if max_result < 0:
            raise IllegalArgumentError(f"max results must be >= 0, got {max_result}")
        self._max_results = max_result
        return self

    def get_result_list(self) -> list[Any]:
        rows = self._manager._execute(self._compiled, self._validated_bindings())
        end = None if self._max_results is None else self._first_result + self._max_results
        rows = rows[self._first_result : end]
        self._check_types(rows)
        return rows

    def get_result_stream(self) -> Iterator[Any]:
        return iter(self.get_result_list())

    def get_single_result(self) -> Any:
        rows = self.get_result_list()
        if not rows:
            raise NoResultError(f"no entity found for query: {self.text!r}")
        if len(rows) > 1:
            raise NonUniqueResultError(
                f"query did not return a unique result ({len(rows)} rows): {self.text!r}"
            )
        return rows[0]

    def _validated_bindings(self) -> dict[str | int, Any]:
        declared = self.parameters
        unknown = [k for k in self._bindings if k not in declared]
        if unknown:
            raise ParameterBindingError(
                f"query does not declare parameter(s) {_labels(unknown)}: {self.text!r}"
            )
        missing = [k for k in declared if k not in self._bindings]
        if missing:
            raise ParameterBindingError(
                f"no value bound for parameter(s) {_labels(missing)}: {self.text!r}"
            )
        return dict(self._bindings)

    def _check_types(self, rows: list[Any]) -> None:
        pass


class TypedQuery(Query, Generic[T]):
    def __init__(self, manager: EntityManager, compiled: CompiledQuery, result_class: type[T]) -> None:
        super().__init__(manager, compiled)
        self.result_class = result_class

    def get_result_list(self) -> list[T]:
        return super().get_result_list()

    def get_single_result(self) -> T:
        return super().get_single_result()

    def _check_types(self, rows: list[Any]) -> None:
        if self.result_class is object:
            return
        for row in rows:
            if row is not None and not isinstance(row, self.result_class):
                raise QueryResultTypeError(
                    f"query returned {type(row).__name__}, expected "
                    f"{self.result_class.__name__}: {self.text!r}"
                )


def _labels(keys: list[str | int]) -> str:
    return ", ".join(f"?{k}" if isinstance(k, int) else f":{k}" for k in sorted(keys, key=str))


# --- Module Notes -----------------------------------------------------------
# Bindings are validated at execution time, so parameters can be set in any order and
# the same query object can be re-executed with different values.
