"""
Data Flow Graph (DFG) extraction for Python code.

Two pieces work together:

- A per-statement def/use extractor classifying one statement into the
  names it defines and the names it reads.
- A reaching definitions fixpoint over the CFG's blocks which links every
  definition to each statement that uses its name while it is still live.

Definitions come from:
- VARIABLE: assignment targets (x = ..., a, b = ..., x += ...)
- FUNCTION / CLASS: def and class statements
- IMPORT: import and from-import statements
- MUTATION: receivers/arguments of calls the SlicerConfig says mutate them
  (x.append(...))
- MAGIC: manual ``"defs: [...]"`` annotations inside string literals

Names are matched by spelling only: there is no scope resolution, so an
inner function's local ``x`` and the module's ``x`` are the same name.
"""

import ast
import json
import logging
import re
from dataclasses import dataclass, field
from enum import Enum, auto

from .cfg_extractor import CFGBlock, CFGInfo, build_cfg
from .locations import Location, header_location, loc_string, location_of
from .slicer_config import SlicerConfig
from .slicing import backward_slice, forward_slice, slice_lines

logger = logging.getLogger(__name__)


class DefType(Enum):
    """What produced a binding."""

    VARIABLE = auto()
    CLASS = auto()
    FUNCTION = auto()
    IMPORT = auto()
    MUTATION = auto()
    MAGIC = auto()


class DefLevel(Enum):
    """Reserved: not assigned by any extraction rule yet."""

    DEFINITION = auto()
    GLOBAL_CONFIG = auto()
    INITIALIZATION = auto()
    UPDATE = auto()


@dataclass(frozen=True)
class Definition:
    """
    A program point binding a name.

    Identity is ``name`` + ``location`` (the span of the name reference, not
    the whole statement). ``kind``, ``statement`` and ``level`` don't take
    part in equality, so a set holds one definition per name and span.
    """

    name: str
    location: Location
    kind: DefType = field(compare=False)
    statement: ast.AST = field(compare=False, repr=False)
    level: DefLevel | None = field(default=None, compare=False)

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "type": self.kind.name.lower(),
            "location": loc_string(self.location),
        }


@dataclass(frozen=True)
class Use:
    """
    One identifier reference read by a statement.

    The same identifier twice in a statement is two uses, told apart by
    location.
    """

    name: str
    location: Location
    node: ast.AST = field(compare=False, repr=False)


@dataclass
class SymbolTable:
    """
    Per-analysis name bookkeeping.

    ``module_names`` collects every name bound by an import. Nothing reads it
    during the fixpoint yet; it is kept for callers that want to tell module
    references apart from data.
    """

    module_names: set[str] = field(default_factory=set)


@dataclass(frozen=True)
class DefUseInfo:
    """Definitions made by a statement and the bare names it reads."""

    defs: frozenset[Definition]
    uses: frozenset[str]


# =============================================================================
# Tree walking
# =============================================================================


def walk_with_ancestors(node: ast.AST, ancestors: tuple[ast.AST, ...] = ()):
    """
    Pre-order walk yielding ``(node, chain)`` pairs.

    ``chain`` is the path from the walk's root down to and including ``node``.
    """
    chain = ancestors + (node,)
    yield node, chain
    for child in ast.iter_child_nodes(node):
        yield from walk_with_ancestors(child, chain)


def gather_names(node: ast.AST | list[ast.AST] | None) -> frozenset[Use]:
    """Get every ``ast.Name`` under a node (or list of nodes) as uses."""
    if node is None:
        return frozenset()
    if isinstance(node, list):
        return frozenset().union(*(gather_names(n) for n in node))
    return frozenset(
        Use(name=n.id, location=location_of(n), node=n)
        for n in ast.walk(node)
        if isinstance(n, ast.Name)
    )


# =============================================================================
# Heuristic definitions
# =============================================================================


def _call_name(call: ast.Call) -> str | None:
    """Callee name: the member for ``a.f()``, the identifier for ``f()``."""
    if isinstance(call.func, ast.Attribute):
        return call.func.attr
    if isinstance(call.func, ast.Name):
        return call.func.id
    return None


def _mutated_parents(call: ast.Call, slicer_config: SlicerConfig) -> list[ast.AST]:
    """Expressions the configured rules say this call mutates."""
    name = _call_name(call)
    if name is None:
        return []

    parents: list[ast.AST] = []
    for config in slicer_config.configs_for(name):
        if config.mutates_instance and isinstance(call.func, ast.Attribute):
            parents.append(call.func.value)
        for position in config.positional_arguments_mutated:
            if position < len(call.args):
                parents.append(call.args[position])
        for keyword in config.keyword_arguments_mutated:
            for kw in call.keywords:
                if kw.arg == keyword:
                    parents.append(kw.value)
    return parents


def get_mutation_defs(
    statement: ast.AST, slicer_config: SlicerConfig
) -> set[Definition]:
    """
    Get MUTATION definitions for names under mutated receivers/arguments.

    Unsound on purpose: a call with no matching rule mutates nothing.
    """
    relevant_parents: list[ast.AST] = []
    defs: set[Definition] = set()

    for node, chain in walk_with_ancestors(statement):
        if isinstance(node, ast.Call):
            relevant_parents.extend(_mutated_parents(node, slicer_config))
        elif isinstance(node, ast.Name):
            if any(ancestor in relevant_parents for ancestor in chain):
                defs.add(
                    Definition(
                        name=node.id,
                        location=location_of(node),
                        kind=DefType.MUTATION,
                        statement=statement,
                    )
                )
    return defs


_DEF_ANNOTATION = re.compile(r'"defs: (.*)"')


def _parse_def_annotation(
    payload: str, literal_location: Location, statement: ast.AST
) -> list[Definition]:
    """Raises ValueError, TypeError, KeyError or IndexError on bad payloads."""
    specs = json.loads(payload.replace('\\"', '"'))
    if not isinstance(specs, list):
        raise TypeError("annotation payload is not a list")

    defs = []
    for def_spec in specs:
        name = def_spec["name"]
        if not isinstance(name, str):
            raise TypeError("annotation name is not a string")
        (start_line, start_col), (end_line, end_col) = def_spec["pos"]
        if not all(isinstance(n, int) for n in (start_line, start_col, end_line, end_col)):
            raise TypeError("annotation position is not a pair of integer pairs")
        defs.append(
            Definition(
                name=name,
                location=Location(
                    first_line=literal_location.first_line + start_line,
                    first_column=start_col,
                    last_line=literal_location.first_line + end_line,
                    last_column=end_col,
                ),
                kind=DefType.MAGIC,
                statement=statement,
            )
        )
    return defs


def get_annotation_defs(statement: ast.AST) -> set[Definition]:
    """
    Get MAGIC definitions declared in string literals.

    A literal containing ``"defs: [{"name": "z", "pos": [[0, 0], [0, 1]]}]"``
    defines ``z`` at the given line/column offsets from the literal's first
    line. Literals whose payload doesn't parse are not annotations.
    """
    defs: set[Definition] = set()
    for node in ast.walk(statement):
        if not (isinstance(node, ast.Constant) and isinstance(node.value, str)):
            continue
        match = _DEF_ANNOTATION.search(node.value)
        if not match:
            continue
        try:
            defs.update(_parse_def_annotation(match.group(1), location_of(node), statement))
        except (ValueError, TypeError, KeyError, IndexError) as e:
            logger.debug(f"Ignoring malformed def annotation at line {node.lineno}: {e}")
    return defs


# =============================================================================
# Def/Use extraction
# =============================================================================

ASSIGNMENTS = (ast.Assign, ast.AugAssign, ast.AnnAssign)


def _is_assignment(statement: ast.AST) -> bool:
    # An annotation without a value binds nothing
    if isinstance(statement, ast.AnnAssign):
        return statement.value is not None
    return isinstance(statement, ASSIGNMENTS)


def _assignment_targets(statement: ast.Assign | ast.AugAssign | ast.AnnAssign) -> list[ast.expr]:
    if isinstance(statement, ast.Assign):
        return statement.targets
    return [statement.target]


def _assignment_sources(statement: ast.Assign | ast.AugAssign | ast.AnnAssign) -> list[ast.expr]:
    if isinstance(statement, ast.AnnAssign):
        return [statement.value, statement.annotation]
    return [statement.value]


def _import_defs(
    statement: ast.Import | ast.ImportFrom, symbol_table: SymbolTable
) -> set[Definition]:
    if isinstance(statement, ast.ImportFrom):
        # Doesn't handle 'from <pkg> import *': those names stay invisible
        if any(alias.name == "*" for alias in statement.names):
            return set()
        names = [(alias.asname or alias.name, alias) for alias in statement.names]
    else:
        # 'import a.b.c' binds 'a'
        names = [
            (alias.asname or alias.name.split(".")[0], alias) for alias in statement.names
        ]

    symbol_table.module_names.update(name for name, _ in names)
    return {
        Definition(
            name=name,
            location=location_of(alias),
            kind=DefType.IMPORT,
            statement=statement,
        )
        for name, alias in names
    }


def get_defs(
    statement: ast.AST | None,
    symbol_table: SymbolTable,
    slicer_config: SlicerConfig | None = None,
) -> frozenset[Definition]:
    """
    Get the definitions a statement makes.

    Both heuristics (mutating calls and manual annotations) apply to every
    statement; then exactly one statement-kind rule adds its definitions.
    Import statements also record their bound names in ``symbol_table``.
    """
    if statement is None:
        return frozenset()
    slicer_config = slicer_config or SlicerConfig()

    defs = get_mutation_defs(statement, slicer_config)
    defs |= get_annotation_defs(statement)

    if isinstance(statement, (ast.Import, ast.ImportFrom)):
        defs |= _import_defs(statement, symbol_table)
    elif _is_assignment(statement):
        targets = gather_names(_assignment_targets(statement))
        defs |= {
            Definition(
                name=use.name,
                location=use.location,
                kind=DefType.VARIABLE,
                statement=statement,
            )
            for use in targets
        }
    elif isinstance(statement, (ast.FunctionDef, ast.AsyncFunctionDef)):
        defs.add(
            Definition(
                name=statement.name,
                location=header_location(statement),
                kind=DefType.FUNCTION,
                statement=statement,
            )
        )
    elif isinstance(statement, ast.ClassDef):
        defs.add(
            Definition(
                name=statement.name,
                location=header_location(statement),
                kind=DefType.CLASS,
                statement=statement,
            )
        )

    return frozenset(defs)


def get_uses(statement: ast.AST | None, symbol_table: SymbolTable) -> frozenset[Use]:
    """
    Get the name references a statement reads.

    For assignments that's the value side, plus the targets of an augmented
    assignment (``x += 1`` reads ``x``). Any other statement uses every name
    in it, including names it also defines.
    """
    if statement is None:
        return frozenset()
    if _is_assignment(statement):
        uses = gather_names(_assignment_sources(statement))
        if isinstance(statement, ast.AugAssign):
            uses |= gather_names(statement.target)
        return uses
    return gather_names(statement)


def get_defs_uses(
    statement: ast.AST | None,
    symbol_table: SymbolTable,
    slicer_config: SlicerConfig | None = None,
) -> DefUseInfo:
    """Get a statement's definitions and the bare names it uses."""
    defs = get_defs(statement, symbol_table, slicer_config)
    uses = get_uses(statement, symbol_table)
    return DefUseInfo(defs=defs, uses=frozenset(use.name for use in uses))


# =============================================================================
# Reaching definitions fixpoint
# =============================================================================


@dataclass(frozen=True)
class Dataflow:
    """
    A def-use edge between two statements.

    The value produced at ``from_node`` may be read at ``to_node``. Edges are
    identified by the two statements' spans, so several definitions/uses
    between the same pair of statements make a single edge.
    """

    from_location: Location
    to_location: Location
    from_node: ast.AST = field(compare=False, repr=False)
    to_node: ast.AST = field(compare=False, repr=False)

    @classmethod
    def between(cls, from_node: ast.AST, to_node: ast.AST) -> "Dataflow":
        return cls(
            from_location=location_of(from_node),
            to_location=location_of(to_node),
            from_node=from_node,
            to_node=to_node,
        )

    @property
    def key(self) -> str:
        return f"{loc_string(self.from_location)}->{loc_string(self.to_location)}"

    def to_dict(self) -> dict:
        return {
            "from": loc_string(self.from_location),
            "to": loc_string(self.to_location),
            "from_line": self.from_location.first_line,
            "to_line": self.to_location.first_line,
        }


class DataflowAnalyzer:
    """
    Reaching definitions analysis over a CFG.

    Uses a worklist on basic blocks. A block's incoming definitions are its
    own last result merged with every predecessor's; statements are then
    replayed in order, linking reaching definitions to uses, killing
    definitions by name and adding the new ones. A block whose result changes
    puts its successors back on the worklist.

    Each analyzer owns its symbol table, reaching sets and edges, so separate
    analyzers can run side by side.
    """

    def __init__(
        self,
        cfg: CFGInfo,
        slicer_config: SlicerConfig | None = None,
        max_iterations: int | None = None,
    ):
        self.cfg = cfg
        self.slicer_config = slicer_config or SlicerConfig()
        self.max_iterations = max_iterations
        self.symbol_table = SymbolTable()
        self.definitions_for_block: dict[int, frozenset[Definition]] = {
            b.id: frozenset() for b in cfg.blocks
        }
        self.dataflows: set[Dataflow] = set()
        self.iterations = 0

    def _incoming(self, block: CFGBlock) -> frozenset[Definition]:
        """Definitions reaching the top of ``block``."""
        return self.definitions_for_block[block.id].union(
            *(self.definitions_for_block[p.id] for p in self.cfg.get_predecessors(block))
        )

    def _replay(self, block: CFGBlock, defs: frozenset[Definition]) -> frozenset[Definition]:
        """Run the block's statements over ``defs``, recording edges."""
        for statement in block.statements:
            info = get_defs_uses(statement, self.symbol_table, self.slicer_config)

            # Everything reaching here whose name is used gets an edge
            for definition in defs:
                if definition.name in info.uses:
                    self.dataflows.add(Dataflow.between(definition.statement, statement))

            defined_names = {d.name for d in info.defs}
            defs = frozenset(d for d in defs if d.name not in defined_names) | info.defs
        return defs

    def analyze(self) -> set[Dataflow]:
        """
        Iterate to a fixpoint and return the def-use edges.

        Calling again starts from the converged state, so a second call finds
        no new edges. With ``max_iterations`` set, stops early once that many
        blocks have been visited and returns what was found so far.
        """
        work_queue: list[CFGBlock] = list(reversed(self.cfg.blocks))
        visits = 0

        while work_queue:
            if self.max_iterations is not None and visits >= self.max_iterations:
                logger.warning(
                    f"Dataflow analysis of {self.cfg.function_name} stopped after "
                    f"{visits} block visits without converging"
                )
                break

            block = work_queue.pop()
            visits += 1

            old_defs = self.definitions_for_block[block.id]
            defs = self._replay(block, self._incoming(block))

            if defs != old_defs:
                # Definitions have changed, so redo the successor blocks
                self.definitions_for_block[block.id] = defs
                for succ in self.cfg.get_successors(block):
                    if succ not in work_queue:
                        work_queue.append(succ)

        self.iterations += visits
        logger.debug(
            f"Dataflow analysis of {self.cfg.function_name}: {visits} block visits, "
            f"{len(self.dataflows)} edges"
        )
        return set(self.dataflows)


def dataflow_analysis(
    cfg: CFGInfo, slicer_config: SlicerConfig | None = None
) -> set[Dataflow]:
    """Compute the def-use edges of a CFG with a fresh analyzer."""
    return DataflowAnalyzer(cfg, slicer_config).analyze()


# =============================================================================
# Python DFG Extraction
# =============================================================================


@dataclass
class DataflowInfo:
    """
    Dataflow result for a function or module.

    Provides:
    - The CFG the analysis ran on
    - Def-use edges between statements
    - Definitions live at the end of each block
    - Slicing over the edges
    """

    function_name: str
    cfg: CFGInfo
    dataflows: set[Dataflow]
    definitions_for_block: dict[int, frozenset[Definition]]
    symbol_table: SymbolTable

    @property
    def sorted_dataflows(self) -> list[Dataflow]:
        return sorted(self.dataflows, key=lambda d: (d.from_location, d.to_location))

    def reaching_definitions(self, block_id: int) -> frozenset[Definition]:
        """Definitions live at the end of a block."""
        return self.definitions_for_block[block_id]

    def backward_slice(self, line: int) -> set[int]:
        """Lines whose statements can affect the statement(s) at ``line``."""
        return slice_lines(backward_slice(self.dataflows, [line]))

    def forward_slice(self, line: int) -> set[int]:
        """Lines whose statements can be affected by the statement(s) at ``line``."""
        return slice_lines(forward_slice(self.dataflows, [line]))

    def to_dict(self) -> dict:
        return {
            "function": self.function_name,
            "edges": [d.to_dict() for d in self.sorted_dataflows],
            "module_names": sorted(self.symbol_table.module_names),
        }


def extract_python_dataflow(
    source: str,
    function_name: str | None = None,
    slicer_config: SlicerConfig | None = None,
) -> DataflowInfo:
    """
    Extract def-use edges for Python code using CFG-based reaching definitions.

    Definitions from both if/else branches reach uses after the merge point,
    and loops are iterated until no block's reaching set changes.

    Args:
        source: Python source code
        function_name: Function to analyze; the module's top-level code if None
        slicer_config: Mutation rules; no call mutates anything if None

    Returns:
        DataflowInfo with the CFG, reaching definitions and def-use edges

    Raises:
        ValueError: If function not found in source
        SyntaxError: If the source doesn't parse
    """
    tree = ast.parse(source)
    cfg = build_cfg(tree, function_name)

    analyzer = DataflowAnalyzer(cfg, slicer_config)
    dataflows = analyzer.analyze()

    return DataflowInfo(
        function_name=cfg.function_name,
        cfg=cfg,
        dataflows=dataflows,
        definitions_for_block=dict(analyzer.definitions_for_block),
        symbol_table=analyzer.symbol_table,
    )
