"""Tests for the per-statement def/use extractor.

Covers each statement-kind rule (imports, assignments, def, class), the use
rules, the mutating-call heuristic driven by SlicerConfig and manual
``"defs: ..."`` annotations in string literals.
"""

import pytest

from defuse.dfg_extractor import (
    DefType,
    Definition,
    gather_names,
    get_defs,
    get_defs_uses,
    get_uses,
)
from defuse.locations import Location
from defuse.slicer_config import FunctionConfig, SlicerConfig


def names_by_kind(defs) -> dict[str, set[DefType]]:
    result: dict[str, set[DefType]] = {}
    for d in defs:
        result.setdefault(d.name, set()).add(d.kind)
    return result


# =============================================================================
# Assignments
# =============================================================================


def test_assignment_defines_target_and_uses_value(parse_statement, symbol_table):
    """x = y + 1 defines x at its name and reads y."""
    stmt = parse_statement("x = y + 1")

    info = get_defs_uses(stmt, symbol_table)

    assert names_by_kind(info.defs) == {"x": {DefType.VARIABLE}}
    (x_def,) = info.defs
    assert x_def.location == Location(1, 0, 1, 1)
    assert x_def.statement is stmt
    assert info.uses == {"y"}


def test_destructuring_assignment_defines_every_target(parse_statement, symbol_table):
    """Every name in a nested tuple target is defined."""
    stmt = parse_statement("a, (b, *c) = f(d)")

    info = get_defs_uses(stmt, symbol_table)

    assert set(names_by_kind(info.defs)) == {"a", "b", "c"}
    assert info.uses == {"f", "d"}


def test_chained_assignment_defines_all_targets(parse_statement, symbol_table):
    """a = b = c defines both a and b."""
    stmt = parse_statement("a = b = c")

    info = get_defs_uses(stmt, symbol_table)

    assert set(names_by_kind(info.defs)) == {"a", "b"}
    assert info.uses == {"c"}


def test_augmented_assignment_reads_its_target(parse_statement, symbol_table):
    """x += y both reads and defines x."""
    stmt = parse_statement("x += y")

    info = get_defs_uses(stmt, symbol_table)

    assert names_by_kind(info.defs) == {"x": {DefType.VARIABLE}}
    assert info.uses == {"x", "y"}


def test_plain_assignment_does_not_read_its_target(parse_statement, symbol_table):
    """Plain assignment targets are not uses."""
    stmt = parse_statement("x = x")

    uses = get_uses(stmt, symbol_table)

    # Only the right-hand x is a use
    assert [(u.name, u.location) for u in uses] == [("x", Location(1, 4, 1, 5))]


def test_subscript_and_attribute_targets_define_every_name(parse_statement, symbol_table):
    """Every identifier inside a target counts, including index and base names."""
    stmt = parse_statement("a[i] = obj.attr = v")

    info = get_defs_uses(stmt, symbol_table)

    assert set(names_by_kind(info.defs)) == {"a", "i", "obj"}
    assert info.uses == {"v"}


def test_annotated_assignment(parse_statement, symbol_table):
    """Annotated assignments read the value and the annotation."""
    stmt = parse_statement("x: List[int] = make()")

    info = get_defs_uses(stmt, symbol_table)

    assert names_by_kind(info.defs) == {"x": {DefType.VARIABLE}}
    assert info.uses == {"List", "int", "make"}


def test_bare_annotation_binds_nothing(parse_statement, symbol_table):
    """x: int without a value defines nothing."""
    stmt = parse_statement("x: int")

    info = get_defs_uses(stmt, symbol_table)

    assert info.defs == frozenset()
    assert info.uses == {"x", "int"}


# =============================================================================
# Imports
# =============================================================================


def test_import_defines_names_and_records_modules(parse_statement, symbol_table):
    """Imports define their bound names and record them as modules."""
    stmt = parse_statement("import numpy as np, sys")

    defs = get_defs(stmt, symbol_table)

    assert names_by_kind(defs) == {"np": {DefType.IMPORT}, "sys": {DefType.IMPORT}}
    assert symbol_table.module_names == {"np", "sys"}


def test_dotted_import_binds_top_level_package(parse_statement, symbol_table):
    """import os.path binds os, located at the alias."""
    stmt = parse_statement("import os.path")

    defs = get_defs(stmt, symbol_table)

    assert names_by_kind(defs) == {"os": {DefType.IMPORT}}
    (os_def,) = defs
    assert os_def.location == Location(1, 7, 1, 14)


def test_from_import_defines_each_name(parse_statement, symbol_table):
    """from-imports define each imported name, honoring aliases."""
    stmt = parse_statement("from os import path, sep as separator")

    defs = get_defs(stmt, symbol_table)

    assert names_by_kind(defs) == {
        "path": {DefType.IMPORT},
        "separator": {DefType.IMPORT},
    }
    assert symbol_table.module_names == {"path", "separator"}


def test_wildcard_import_defines_nothing(parse_statement, symbol_table):
    """Known gap: names bound by 'from X import *' are invisible."""
    stmt = parse_statement("from os import *")

    defs = get_defs(stmt, symbol_table)

    assert [d for d in defs if d.kind is DefType.IMPORT] == []
    assert symbol_table.module_names == set()


def test_symbol_table_accumulates_across_statements(parse_statement, symbol_table):
    """Module names collect across every import processed."""
    get_defs(parse_statement("import json"), symbol_table)
    get_defs(parse_statement("from pathlib import Path"), symbol_table)

    assert symbol_table.module_names == {"json", "Path"}


# =============================================================================
# Function and class definitions
# =============================================================================


def test_function_def_defines_name_at_header(parse_statement, symbol_table):
    """A def defines its name at the "def name" span."""
    stmt = parse_statement(
        """\
        def fact(n):
            return n * fact(n - 1)
        """
    )

    info = get_defs_uses(stmt, symbol_table)

    assert names_by_kind(info.defs) == {"fact": {DefType.FUNCTION}}
    (fact_def,) = info.defs
    assert fact_def.location == Location(1, 0, 1, 8)
    # Every name in the body is a use, the recursive call included
    assert info.uses == {"n", "fact"}


def test_decorated_function_header_skips_decorators(parse_statement, symbol_table):
    """The header span starts at async def, not at the decorator."""
    stmt = parse_statement(
        """\
        @cache
        async def load(path):
            return await read(path)
        """
    )

    info = get_defs_uses(stmt, symbol_table)

    (load_def,) = info.defs
    assert load_def.kind is DefType.FUNCTION
    assert load_def.location == Location(2, 0, 2, 14)
    assert info.uses == {"cache", "read", "path"}


def test_class_def_defines_name_at_header(parse_statement, symbol_table):
    """A class defines its name at the "class name" span."""
    stmt = parse_statement(
        """\
        class Point(Base):
            origin = ORIGIN
        """
    )

    info = get_defs_uses(stmt, symbol_table)

    assert names_by_kind(info.defs) == {"Point": {DefType.CLASS}}
    (point_def,) = info.defs
    assert point_def.location == Location(1, 0, 1, 11)
    assert info.uses == {"Base", "origin", "ORIGIN"}


# =============================================================================
# Other statements
# =============================================================================


def test_other_statements_only_use_names(parse_statement, symbol_table):
    """Expression statements define nothing and read every name."""
    stmt = parse_statement("print(x, y.z)")

    info = get_defs_uses(stmt, symbol_table)

    assert info.defs == frozenset()
    assert info.uses == {"print", "x", "y"}


def test_none_statement_is_empty(symbol_table):
    """A missing statement has no defs or uses."""
    info = get_defs_uses(None, symbol_table)

    assert info.defs == frozenset()
    assert info.uses == frozenset()


def test_repeated_identifier_is_two_uses(parse_statement):
    """The same name twice in a statement gives two uses."""
    stmt = parse_statement("f(x, x)")

    uses = gather_names(stmt)

    x_uses = sorted(u.location for u in uses if u.name == "x")
    assert x_uses == [Location(1, 2, 1, 3), Location(1, 5, 1, 6)]


def test_definition_identity_ignores_kind_and_statement(parse_statement):
    """Definitions are equal when name and location match."""
    stmt_a = parse_statement("x = 1")
    stmt_b = parse_statement("x.append(1)")
    loc = Location(1, 0, 1, 1)

    a = Definition(name="x", location=loc, kind=DefType.VARIABLE, statement=stmt_a)
    b = Definition(name="x", location=loc, kind=DefType.MUTATION, statement=stmt_b)

    assert a == b
    assert len({a, b}) == 1


def test_extraction_is_idempotent(parse_statement):
    """Extracting the same statement twice gives equal results."""
    from defuse.dfg_extractor import SymbolTable

    stmt = parse_statement("result = data.pop(key) + '\"defs: [{\"name\": \"q\", \"pos\": [[0, 0], [0, 1]]}]\"'")
    config = SlicerConfig.default()

    first = get_defs_uses(stmt, SymbolTable(), config)
    second = get_defs_uses(stmt, SymbolTable(), config)

    assert first == second
    assert {(d.name, d.kind) for d in first.defs} == {
        (d.name, d.kind) for d in second.defs
    }


# =============================================================================
# Mutating calls
# =============================================================================


class TestMutationHeuristic:
    """Calls named in the SlicerConfig define the names they mutate."""

    def test_receiver_is_mutated(self, parse_statement, symbol_table):
        """lst.append(1) defines lst, not the argument."""
        config = SlicerConfig([FunctionConfig("append", mutates_instance=True)])
        stmt = parse_statement("lst.append(1)")

        defs = get_defs(stmt, symbol_table, config)

        assert names_by_kind(defs) == {"lst": {DefType.MUTATION}}
        (lst_def,) = defs
        assert lst_def.location == Location(1, 0, 1, 3)
        assert lst_def.statement is stmt

    def test_without_rule_nothing_is_mutated(self, parse_statement, symbol_table):
        """Calls without a matching rule define nothing."""
        stmt = parse_statement("lst.append(1)")

        assert get_defs(stmt, symbol_table) == frozenset()
        assert get_defs(stmt, symbol_table, SlicerConfig()) == frozenset()

    def test_every_name_in_receiver_is_mutated(self, parse_statement, symbol_table):
        """Every name inside a complex receiver is mutated."""
        config = SlicerConfig([FunctionConfig("append", mutates_instance=True)])
        stmt = parse_statement("groups[key].append(item)")

        defs = get_defs(stmt, symbol_table, config)

        assert set(names_by_kind(defs)) == {"groups", "key"}

    def test_instance_rule_ignores_plain_calls(self, parse_statement, symbol_table):
        """mutatesInstance needs an attribute call to have a receiver."""
        config = SlicerConfig([FunctionConfig("append", mutates_instance=True)])
        stmt = parse_statement("append(lst, 1)")

        assert get_defs(stmt, symbol_table, config) == frozenset()

    def test_positional_argument_is_mutated(self, parse_statement, symbol_table):
        """A positional rule mutates the argument at that index."""
        config = SlicerConfig([FunctionConfig("shuffle", positional_arguments_mutated=(0,))])
        stmt = parse_statement("random.shuffle(deck, rng)")

        defs = get_defs(stmt, symbol_table, config)

        assert names_by_kind(defs) == {"deck": {DefType.MUTATION}}

    def test_missing_positional_argument_is_skipped(self, parse_statement, symbol_table):
        """Indexes past the last argument are skipped."""
        config = SlicerConfig([FunctionConfig("shuffle", positional_arguments_mutated=(2,))])
        stmt = parse_statement("shuffle(deck)")

        assert get_defs(stmt, symbol_table, config) == frozenset()

    def test_keyword_argument_is_mutated(self, parse_statement, symbol_table):
        """A keyword rule mutates the value passed for that keyword."""
        config = SlicerConfig([FunctionConfig("multiply", keyword_arguments_mutated=("out",))])
        stmt = parse_statement("np.multiply(a, b, out=result)")

        defs = get_defs(stmt, symbol_table, config)

        assert names_by_kind(defs) == {"result": {DefType.MUTATION}}

    def test_mutation_inside_assignment(self, parse_statement, symbol_table):
        """Calls inside an assignment still mutate their receiver."""
        stmt = parse_statement("head = queue.pop(0)")

        defs = get_defs(stmt, symbol_table, SlicerConfig.default())

        assert names_by_kind(defs) == {
            "head": {DefType.VARIABLE},
            "queue": {DefType.MUTATION},
        }

    def test_nested_mutating_calls(self, parse_statement, symbol_table):
        """Each mutating call in a statement contributes its receiver."""
        stmt = parse_statement("print(a.pop(), b.sort())")

        defs = get_defs(stmt, symbol_table, SlicerConfig.default())

        assert names_by_kind(defs) == {
            "a": {DefType.MUTATION},
            "b": {DefType.MUTATION},
        }

    def test_mutation_does_not_change_uses(self, parse_statement, symbol_table):
        """A mutated receiver is still read by the call."""
        stmt = parse_statement("lst.append(x)")

        info = get_defs_uses(stmt, symbol_table, SlicerConfig.default())

        assert info.uses == {"lst", "x"}


# =============================================================================
# Manual def annotations
# =============================================================================


class TestDefAnnotations:
    """String literals carrying '"defs: [...]"' declare MAGIC definitions."""

    def test_annotation_defines_name_relative_to_literal(self, symbol_table):
        """Annotation positions are offsets from the literal's first line."""
        import ast

        source = "\n" * 9 + r"""x = '"defs: [{\"name\":\"z\",\"pos\":[[0,0],[0,1]]}]"'"""
        stmt = ast.parse(source).body[0]

        defs = get_defs(stmt, symbol_table)

        magic = [d for d in defs if d.kind is DefType.MAGIC]
        assert len(magic) == 1
        assert magic[0].name == "z"
        assert magic[0].location == Location(10, 0, 10, 1)
        assert magic[0].statement is stmt

    def test_escaped_quotes_are_unescaped(self, parse_statement, symbol_table):
        """Backslash-escaped quotes in the payload are accepted."""
        # The literal's value keeps the backslashes: \"name\"
        stmt = parse_statement(
            r"""note = '"defs: [{\\"name\\": \\"w\\", \\"pos\\": [[1, 2], [1, 4]]}]"'"""
        )

        defs = get_defs(stmt, symbol_table)

        magic = [d for d in defs if d.kind is DefType.MAGIC]
        assert [(d.name, d.location) for d in magic] == [("w", Location(2, 2, 2, 4))]

    def test_annotation_in_docstring_of_function(self, parse_statement, symbol_table):
        """Annotations in a function's docstring define names for the def."""
        stmt = parse_statement(
            '''\
            def setup():
                """Loads config. "defs: [{"name": "CONFIG", "pos": [[2, 4], [2, 10]]}]" """
                global CONFIG
            '''
        )

        defs = get_defs(stmt, symbol_table)

        assert names_by_kind(defs) == {
            "setup": {DefType.FUNCTION},
            "CONFIG": {DefType.MAGIC},
        }

    @pytest.mark.parametrize(
        "literal",
        [
            r"""'"defs: not json"'""",
            r"""'"defs: {\"name\": \"z\"}"'""",
            r"""'"defs: [{\"name\": \"z\"}]"'""",
            r"""'"defs: [{\"name\": \"z\", \"pos\": [[0]]}]"'""",
            r"""'"defs: [{\"name\": 3, \"pos\": [[0, 0], [0, 1]]}]"'""",
        ],
    )
    def test_malformed_annotations_are_ignored(self, parse_statement, symbol_table, literal):
        """Payloads that don't parse define nothing."""
        stmt = parse_statement(f"x = {literal}")

        defs = get_defs(stmt, symbol_table)

        assert names_by_kind(defs) == {"x": {DefType.VARIABLE}}

    def test_no_partial_annotation(self, parse_statement, symbol_table):
        """One bad record discards the whole annotation."""
        stmt = parse_statement(
            r"""x = '"defs: [{\"name\": \"a\", \"pos\": [[0, 0], [0, 1]]}, {\"name\": \"b\"}]"'"""
        )

        defs = get_defs(stmt, symbol_table)

        assert [d for d in defs if d.kind is DefType.MAGIC] == []

    def test_plain_strings_are_not_annotations(self, parse_statement, symbol_table):
        """Without the quoted "defs: ..." form a string is just a string."""
        stmt = parse_statement("msg = 'defs: [1, 2]'")

        defs = get_defs(stmt, symbol_table)

        assert names_by_kind(defs) == {"msg": {DefType.VARIABLE}}
