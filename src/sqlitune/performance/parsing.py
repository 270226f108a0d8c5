"""Column extraction from SQL with sqlglot.

The auto-indexer needs to know which columns a query filters, joins and
sorts on. :func:`extract_query_columns` parses a statement with the SQLite
dialect and reports every such column reference together with the role it
plays, resolving table aliases along the way.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

import sqlglot
from sqlglot import exp
from sqlglot.errors import SqlglotError

from ..logging import get_logger

logger = get_logger("performance.parsing")

EQUALITY = "equality"
JOIN = "join"
RANGE = "range"
ORDER = "order"

# Position of each role inside a composite index
ROLE_ORDER: Tuple[str, ...] = (EQUALITY, JOIN, RANGE, ORDER)

_EQUALITY_NODES = (exp.EQ, exp.In, exp.Is)
_RANGE_NODES = (exp.GT, exp.GTE, exp.LT, exp.LTE, exp.Between)


@dataclass(frozen=True)
class ColumnReference:
    """A column used by a query; ``table`` is None when it could not be resolved."""

    column: str
    role: str
    table: Optional[str] = None


@dataclass
class QueryColumns:
    tables: Tuple[str, ...] = ()
    aliases: Dict[str, str] = field(default_factory=dict)
    references: List[ColumnReference] = field(default_factory=list)

    def add(self, column: exp.Column, role: str) -> None:
        qualifier = column.table.lower() if column.table else ""
        if qualifier:
            table = self.aliases.get(qualifier)
        elif len(self.tables) == 1:
            table = self.tables[0]
        else:
            table = None
        self.references.append(ColumnReference(column=column.name.lower(), role=role, table=table))


def _column_operands(node: exp.Expression) -> List[exp.Column]:
    operands = [node.this]
    if isinstance(node, exp.Binary):
        operands.append(node.expression)
    return [operand for operand in operands if isinstance(operand, exp.Column)]


def extract_query_columns(sql: str) -> Optional[QueryColumns]:
    """Parse ``sql`` and collect the columns it filters, joins and sorts on.

    Returns None when sqlglot cannot parse the statement.

    Example:
        >>> found = extract_query_columns("select * from users u where u.email = ?")
        >>> [(r.table, r.column, r.role) for r in found.references]
        [('users', 'email', 'equality')]
    """
    try:
        tree = sqlglot.parse_one(sql, read="sqlite")
    except SqlglotError as e:
        logger.debug("Query could not be parsed", sql=sql[:200], error=str(e))
        return None
    if tree is None:
        return None

    found = QueryColumns()
    tables: List[str] = []
    for table in tree.find_all(exp.Table):
        name = table.name.lower()
        if not name:
            continue
        if name not in tables:
            tables.append(name)
        found.aliases[name] = name
        found.aliases[table.alias_or_name.lower()] = name
    found.tables = tuple(tables)

    # depth-first keeps predicates in the order the query wrote them
    for where in tree.find_all(exp.Where, bfs=False):
        for node in where.find_all(*_EQUALITY_NODES, bfs=False):
            columns = _column_operands(node)
            # column = column inside WHERE is an implicit join
            role = JOIN if len(columns) == 2 else EQUALITY
            for column in columns:
                found.add(column, role)
        for node in where.find_all(*_RANGE_NODES, bfs=False):
            for column in _column_operands(node):
                found.add(column, RANGE)

    for join in tree.find_all(exp.Join, bfs=False):
        condition = join.args.get("on")
        if condition is None:
            continue
        for node in condition.find_all(exp.EQ, bfs=False):
            columns = _column_operands(node)
            role = JOIN if len(columns) == 2 else EQUALITY
            for column in columns:
                found.add(column, role)

    for order in tree.find_all(exp.Order):
        for ordered in order.expressions:
            if isinstance(ordered.this, exp.Column):
                found.add(ordered.this, ORDER)

    return found
