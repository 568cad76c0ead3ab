"""SQL fragments for source, namespace and session filtering of chunk rows."""

from dataclasses import dataclass, field
from typing import Iterable

from ...enumeration import MemorySource


@dataclass(frozen=True)
class SqlFilter:
    """A ` AND ...` clause plus its positional parameters, appended to a WHERE."""

    sql: str = ""
    params: tuple = field(default_factory=tuple)

    def cache_key(self) -> tuple:
        return self.sql, self.params


def build_source_filter(
    sources: Iterable[MemorySource | str] | None = None,
    namespace: str | None = None,
    session_id: str | None = None,
    alias: str | None = None,
) -> SqlFilter:
    """Build the filter for chunk queries.

    Args:
        sources: Allowed source tags; None or empty means every source
        namespace: Equality filter on `metadata.namespace`
        session_id: Equality filter on `metadata.session_id`
        alias: Table alias of `chunks` in the surrounding query (e.g. "c")
    """
    prefix = f"{alias}." if alias else ""
    clauses: list[str] = []
    params: list[str] = []

    source_values = [s.value if isinstance(s, MemorySource) else str(s) for s in (sources or [])]
    if source_values:
        placeholders = ", ".join("?" for _ in source_values)
        clauses.append(f"{prefix}source IN ({placeholders})")
        params.extend(source_values)

    if namespace is not None:
        clauses.append(f"json_extract({prefix}metadata, '$.namespace') = ?")
        params.append(namespace)

    if session_id is not None:
        clauses.append(f"json_extract({prefix}metadata, '$.session_id') = ?")
        params.append(session_id)

    if not clauses:
        return SqlFilter()
    return SqlFilter(sql="".join(f" AND {clause}" for clause in clauses), params=tuple(params))
