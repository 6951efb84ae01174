"""
AQL query builder.

Builds a query string plus bind variables from literal text segments
interleaved with values, so user data never ends up in the query text:
- aql: str.format style front end ("FOR x IN {} RETURN x")
- aql_template: segments-and-values core
- join: join fragments with a separator
- literal: trusted text inlined verbatim

Example:
    >>> users = collection("users")
    >>> q = aql("FOR u IN {} FILTER u.age > {} RETURN u", users, 21)
    >>> q.query
    'FOR u IN @@value0 FILTER u.age > @value1 RETURN u'
    >>> dict(q.bind_vars)
    {'@value0': 'users', 'value1': 21}

Invariants:
    - Every @name / @@name in the query text has exactly one bind var
      and every bind var is referenced in the text
    - Nested generated queries flatten to the same result at any depth
    - None values contribute neither text nor a bind var
"""

from __future__ import annotations

import string
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Iterable, List, Mapping, Optional, Protocol, Sequence, Tuple, runtime_checkable

from .errors import BuilderError

_SCALAR_TYPES = (str, bytes, int, float, bool)


@runtime_checkable
class AqlLiteral(Protocol):
    """Trusted text inserted into a query without binding."""

    def to_aql(self) -> str: ...


@runtime_checkable
class CollectionReference(Protocol):
    """Anything that names a collection, bound with the @@ convention."""

    @property
    def is_arango_collection(self) -> bool: ...

    @property
    def name(self) -> str: ...


@dataclass(frozen=True)
class AqlQuery:
    """A query string with its bind variables.

    Attributes:
        query: Query text
        bind_vars: Read-only mapping of bind variable names to values
    """

    query: str
    bind_vars: Mapping[str, Any] = field(default_factory=dict)

    # Bind values may be lists or dicts
    __hash__ = None  # type: ignore[assignment]

    def __post_init__(self) -> None:
        object.__setattr__(self, "bind_vars", MappingProxyType(dict(self.bind_vars)))

    def to_dict(self) -> dict[str, Any]:
        """Request body shape used by the cursor API."""
        return {"query": self.query, "bindVars": dict(self.bind_vars)}


@dataclass(frozen=True)
class GeneratedAqlQuery(AqlQuery):
    """A query produced by the builder.

    Remembers the segments and values it was built from so that it can be
    spliced into a parent query and renumbered there.
    """

    strings: Tuple[str, ...] = field(default=("",), repr=False, compare=False)
    values: Tuple[Any, ...] = field(default=(), repr=False, compare=False)

    __hash__ = None  # type: ignore[assignment]


@dataclass(frozen=True)
class _Literal:
    value: Any

    def to_aql(self) -> str:
        if self.value is None:
            return ""
        return str(self.value)


@dataclass(frozen=True)
class Collection:
    """Plain collection reference for use in queries."""

    name: str

    @property
    def is_arango_collection(self) -> bool:
        return True


def collection(name: str) -> Collection:
    """Create a collection reference for use in queries."""
    return Collection(name)


def literal(value: Any) -> AqlLiteral:
    """Mark a value as trusted query text.

    Literals are inlined verbatim and never bound, so never pass
    user input here. None renders as an empty string.
    """
    if is_aql_literal(value):
        return value
    return _Literal(value)


def is_aql_literal(value: Any) -> bool:
    return callable(getattr(value, "to_aql", None))


def is_aql_query(value: Any) -> bool:
    if isinstance(value, AqlQuery):
        return True
    return isinstance(value, Mapping) and isinstance(value.get("query"), str) and "bindVars" in value


def is_collection_reference(value: Any) -> bool:
    return bool(getattr(value, "is_arango_collection", False)) and isinstance(
        getattr(value, "name", None), str
    )


def _same_value(known: Any, value: Any) -> bool:
    if known is value:
        return True
    if is_collection_reference(known) and is_collection_reference(value):
        return known.name == value.name
    if type(known) is type(value) and isinstance(value, _SCALAR_TYPES):
        return known == value
    return False


class _BindVarTable:
    """Bind variables collected while building one query."""

    def __init__(self) -> None:
        self.bind_vars: dict[str, Any] = {}
        self._values: List[Any] = []
        self._names: List[str] = []
        self._counter = 0

    def bind(self, raw: Any) -> str:
        """Bind a value and return the name used in the query text."""
        for index, known in enumerate(self._values):
            if _same_value(known, raw):
                return self._names[index]
        if is_collection_reference(raw):
            name = f"@{self._next_name()}"
            self.bind_vars[name] = raw.name
        else:
            name = self._next_name()
            self.bind_vars[name] = raw
        self._values.append(raw)
        self._names.append(name)
        return name

    def merge(self, bind_vars: Mapping[str, Any]) -> None:
        """Merge bind variables of a query that can't be renumbered."""
        for name, value in bind_vars.items():
            if name in self.bind_vars:
                existing = self.bind_vars[name]
                if existing is not value and existing != value:
                    raise BuilderError(name, existing, value)
                continue
            self.bind_vars[name] = value

    def _next_name(self) -> str:
        while True:
            name = f"value{self._counter}"
            self._counter += 1
            if name not in self.bind_vars and f"@{name}" not in self.bind_vars:
                return name


def aql_template(strings: Sequence[str], *values: Any) -> GeneratedAqlQuery:
    """Build a query from text segments interleaved with values.

    Args:
        strings: Literal text segments, one more than the values
        *values: Values to place between the segments

    Returns:
        GeneratedAqlQuery with query text and bind variables

    Raises:
        ValueError: If the segment and value counts don't line up
        BuilderError: If merged bind variables conflict
    """
    strings = list(strings)
    args = list(values)
    if len(strings) != len(args) + 1:
        raise ValueError(
            f"Expected {len(args) + 1} text segments for {len(args)} values, got {len(strings)}"
        )

    table = _BindVarTable()
    query = strings[0]
    i = 0
    while i < len(args):
        raw = args[i]

        if is_aql_literal(raw):
            query += raw.to_aql() + strings[i + 1]
            i += 1
            continue

        if raw is None:
            query += strings[i + 1]
            i += 1
            continue

        if isinstance(raw, GeneratedAqlQuery):
            # Splice the nested segments and values in place and revisit i
            if raw.values:
                query += raw.strings[0]
                args[i : i + 1] = raw.values
                strings[i : i + 2] = [
                    strings[i] + raw.strings[0],
                    *raw.strings[1:-1],
                    raw.strings[-1] + strings[i + 1],
                ]
            else:
                query += raw.query + strings[i + 1]
                strings[i : i + 2] = [strings[i] + raw.query + strings[i + 1]]
                del args[i]
            continue

        if is_aql_query(raw):
            if isinstance(raw, AqlQuery):
                text, bind_vars = raw.query, raw.bind_vars
            else:
                text, bind_vars = raw["query"], raw["bindVars"]
            table.merge(bind_vars)
            query += text + strings[i + 1]
            i += 1
            continue

        name = table.bind(raw)
        query += f"@{name}" + strings[i + 1]
        i += 1

    return GeneratedAqlQuery(
        query=query,
        bind_vars=table.bind_vars,
        strings=tuple(strings),
        values=tuple(args),
    )


def aql(template: str, *args: Any, **kwargs: Any) -> GeneratedAqlQuery:
    """Build a query from a str.format style template.

    Placeholders are "{}", "{0}" or "{name}". Literal braces in AQL
    object expressions must be doubled ("{{" and "}}").

    Example:
        >>> aql("FOR d IN {docs} FILTER d.x > {} RETURN d", 1, docs=collection("docs"))
    """
    strings: List[str] = []
    values: List[Any] = []
    current = ""
    auto_index: Optional[int] = None
    manual = False

    for literal_text, field_name, format_spec, conversion in string.Formatter().parse(template):
        current += literal_text
        if field_name is None:
            continue
        if format_spec or conversion:
            raise ValueError(f"Format specs are not supported in AQL templates: {{{field_name}}}")
        if field_name == "":
            if manual:
                raise ValueError("Cannot switch from manual field numbering to automatic")
            auto_index = 0 if auto_index is None else auto_index + 1
            value = args[auto_index]
        elif field_name.isdigit():
            if auto_index is not None:
                raise ValueError("Cannot switch from automatic field numbering to manual")
            manual = True
            value = args[int(field_name)]
        elif field_name.isidentifier():
            value = kwargs[field_name]
        else:
            raise ValueError(f"Unsupported placeholder in AQL template: {{{field_name}}}")
        strings.append(current)
        values.append(value)
        current = ""

    strings.append(current)
    return aql_template(strings, *values)


def join(values: Iterable[Any], sep: Any = " ") -> GeneratedAqlQuery:
    """Join query fragments or values with a separator.

    Args:
        values: Fragments, literals or plain values
        sep: Separator text or literal, inserted verbatim

    Example:
        >>> filters = [aql("FILTER d.a == {}", 1), aql("FILTER d.b == {}", 2)]
        >>> join(filters, "\\n")
    """
    values = list(values)
    sep_text = sep.to_aql() if is_aql_literal(sep) else str(sep)
    if not values:
        return aql_template([""])
    return aql_template(["", *([sep_text] * (len(values) - 1)), ""], *values)
