"""
Placeholder rewriting at the driver boundary

Query builders emit each backend's native placeholder convention ($n, ?,
@paramN). DBAPI drivers expect their own paramstyle, so statements are
rewritten here, skipping quoted literals and identifiers.
"""
from typing import Any, Dict, List, Sequence, Tuple, Union

QMARK = "qmark"    # sqlite3
FORMAT = "format"  # psycopg2, pymysql, pymssql

_CLOSERS = {"'": "'", '"': '"', "`": "`", "[": "]"}


def _marker(paramstyle: str) -> str:
    return "?" if paramstyle == QMARK else "%s"


def rewrite_placeholders(
    sql: str,
    params: Union[None, Sequence[Any], Dict[str, Any]],
    paramstyle: str,
) -> Tuple[str, Tuple[Any, ...]]:
    """
    Rewrite native placeholders to a DBAPI paramstyle.

    Args:
        sql: Statement with ``$n``, ``?`` or ``@name`` placeholders
        params: List for positional placeholders, mapping for named ones
        paramstyle: QMARK or FORMAT

    Returns:
        (statement, parameters ordered by occurrence)

    Raises:
        ValueError: A placeholder has no matching parameter
    """
    marker = _marker(paramstyle)
    named = isinstance(params, dict)
    values: Union[Dict[str, Any], List[Any]] = params if named else list(params or [])
    ordered: List[Any] = []
    out: List[str] = []
    next_positional = 0

    i = 0
    length = len(sql)
    while i < length:
        char = sql[i]

        if char in _CLOSERS:
            closer = _CLOSERS[char]
            j = i + 1
            while j < length:
                if sql[j] == closer:
                    # Doubled closer is an escaped quote
                    if j + 1 < length and sql[j + 1] == closer:
                        j += 2
                        continue
                    break
                j += 1
            literal = sql[i:j + 1]
            out.append(literal.replace("%", "%%") if paramstyle == FORMAT else literal)
            i = j + 1
            continue

        if char == "$" and i + 1 < length and sql[i + 1].isdigit():
            j = i + 1
            while j < length and sql[j].isdigit():
                j += 1
            index = int(sql[i + 1:j]) - 1
            if named or index < 0 or index >= len(values):
                raise ValueError(f"No parameter for placeholder {sql[i:j]}")
            ordered.append(values[index])
            out.append(marker)
            i = j
            continue

        if char == "?" and not named:
            if next_positional >= len(values):
                raise ValueError("More ? placeholders than parameters")
            ordered.append(values[next_positional])
            next_positional += 1
            out.append(marker)
            i += 1
            continue

        if char == "@" and named and i + 1 < length and (sql[i + 1].isalpha() or sql[i + 1] == "_"):
            j = i + 1
            while j < length and (sql[j].isalnum() or sql[j] == "_"):
                j += 1
            name = sql[i + 1:j]
            if name not in values:
                raise ValueError(f"No parameter for placeholder @{name}")
            ordered.append(values[name])
            out.append(marker)
            i = j
            continue

        if char == "%" and paramstyle == FORMAT:
            out.append("%%")
        else:
            out.append(char)
        i += 1

    return "".join(out), tuple(ordered)
