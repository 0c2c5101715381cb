"""
Source locations and their canonical string keys.

Locations identify definitions, uses and dataflow edges. Two records at the
same span with the same name are the same record, so the location key is
the identity discriminator for every set in the analysis.
"""

import ast
import logging
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass(frozen=True, order=True)
class Location:
    """
    A source span.

    Lines are 1-based and columns 0-based, the way the ast module reports
    them. Ordering is by first line, then first column.
    """

    first_line: int
    first_column: int
    last_line: int
    last_column: int

    def __str__(self) -> str:
        return loc_string(self)

    def contains_line(self, line: int) -> bool:
        return self.first_line <= line <= self.last_line

    def to_dict(self) -> dict:
        return {
            "first_line": self.first_line,
            "first_column": self.first_column,
            "last_line": self.last_line,
            "last_column": self.last_column,
        }


# Degenerate key for nodes the parser left without a position
UNKNOWN_LOCATION = Location(0, 0, 0, 0)


def loc_string(loc: Location) -> str:
    """Canonical key for a span: ``first_line:first_col-last_line:last_col``."""
    return f"{loc.first_line}:{loc.first_column}-{loc.last_line}:{loc.last_column}"


def location_of(node: ast.AST) -> Location:
    """
    Get the span of an AST node.

    Nodes without position info (e.g. ``ast.arguments``, or synthesized nodes
    nobody called ``ast.copy_location`` on) are reported on the error channel
    and mapped to UNKNOWN_LOCATION so the analysis can keep going.
    """
    lineno = getattr(node, "lineno", None)
    col_offset = getattr(node, "col_offset", None)
    if lineno is None or col_offset is None:
        logger.error(f"Node without location: {type(node).__name__}")
        return UNKNOWN_LOCATION

    end_lineno = getattr(node, "end_lineno", None)
    end_col_offset = getattr(node, "end_col_offset", None)
    return Location(
        first_line=lineno,
        first_column=col_offset,
        last_line=end_lineno if end_lineno is not None else lineno,
        last_column=end_col_offset if end_col_offset is not None else col_offset,
    )


def header_location(node: ast.FunctionDef | ast.AsyncFunctionDef | ast.ClassDef) -> Location:
    """
    Get the span of a definition header: ``def name``, ``async def name`` or
    ``class name`` on the definition's first line (decorators excluded).
    """
    start = location_of(node)
    if start is UNKNOWN_LOCATION:
        return start

    if isinstance(node, ast.AsyncFunctionDef):
        keyword = "async def "
    elif isinstance(node, ast.FunctionDef):
        keyword = "def "
    else:
        keyword = "class "

    return Location(
        first_line=start.first_line,
        first_column=start.first_column,
        last_line=start.first_line,
        last_column=start.first_column + len(keyword) + len(node.name),
    )
