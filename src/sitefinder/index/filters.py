"""Filter expressions shared by the document catalog and the vector store.

Stores receive these as plain values and compile them to SQL against a
whitelist of column names, so no callable ever crosses a storage boundary.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Collection, Iterable, List, Tuple, Union

from sitefinder.errors import InvalidArgument


@dataclass(frozen=True, slots=True)
class Equals:
    field: str
    value: str


@dataclass(frozen=True, slots=True)
class NotIn:
    field: str
    values: Tuple[str, ...]

    @classmethod
    def of(cls, field: str, values: Iterable[str]) -> "NotIn":
        return cls(field, tuple(values))


Predicate = Union[Equals, NotIn]


def compile_predicates(
    predicates: Iterable[Predicate], *, allowed_fields: Collection[str]
) -> Tuple[str, List[str]]:
    """Return a ``WHERE`` clause body and its parameters.

    The clause is ``"1"`` when there are no predicates.
    """
    clauses: List[str] = []
    params: List[str] = []
    for predicate in predicates:
        if predicate.field not in allowed_fields:
            raise InvalidArgument(f"Cannot filter on field {predicate.field!r}")
        if isinstance(predicate, Equals):
            clauses.append(f"{predicate.field} = ?")
            params.append(predicate.value)
        elif isinstance(predicate, NotIn):
            # json_each keeps large id sets clear of SQLite's bound-parameter limit
            clauses.append(f"{predicate.field} NOT IN (SELECT value FROM json_each(?))")
            params.append(json.dumps(list(predicate.values)))
        else:
            raise InvalidArgument(f"Unsupported predicate: {predicate!r}")
    return (" AND ".join(clauses) or "1"), params
