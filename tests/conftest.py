"""Pytest configuration and fixtures."""

import ast
import textwrap

import pytest


@pytest.fixture
def parse_statement():
    """Parse source and return one of its top-level statements (the first by default)."""

    def _parse(source: str, index: int = 0) -> ast.stmt:
        return ast.parse(textwrap.dedent(source)).body[index]

    return _parse


@pytest.fixture
def symbol_table():
    from defuse.dfg_extractor import SymbolTable

    return SymbolTable()


def edge_lines(dataflows) -> set[tuple[int, int]]:
    """Collapse edges to (from_line, to_line) pairs."""
    return {(d.from_location.first_line, d.to_location.first_line) for d in dataflows}


@pytest.fixture
def lines_of():
    return edge_lines
