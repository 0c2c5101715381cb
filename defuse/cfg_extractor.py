"""
Control Flow Graph (CFG) extraction for Python code.

Builds statement-level basic blocks from the ast module's output, for either
one function body or a whole module (scripts, notebook cells). Blocks keep the
actual ast statement nodes so the dataflow engine can replay them in order.

Compound statements don't go into blocks whole (their bodies live in other
blocks). Instead their header is placed as a small synthesized statement
that carries the header's source span:

- ``if test:`` / ``while test:``  ->  ``Expr(test)``
- ``for target in iter:``         ->  ``Assign([target], iter)``
- ``with cm as x:``               ->  ``Assign([x], cm)``
- ``except E as e:``              ->  ``Assign([e], E)``
- ``match subject:``              ->  ``Expr(subject)``
- ``def f(a, *rest):``            ->  ``a = None``, ``rest = None`` on entry

Based on staticfg pattern but simplified for def/use analysis.
"""

import ast
from dataclasses import dataclass, field


@dataclass(eq=False)
class CFGBlock:
    """
    Straight-line run of statements: entered at the top, left at the bottom.

    ``statements`` are ast nodes in execution order. Blocks compare by
    identity; ``id`` is unique within one CFG and is what edges refer to.
    """

    id: int
    start_line: int
    end_line: int
    # entry, branch, loop_header, loop_body, except, return, exit or body
    block_type: str
    statements: list[ast.stmt] = field(default_factory=list)
    predecessors: list[int] = field(default_factory=list)
    successors: list[int] = field(default_factory=list)

    def to_dict(self) -> dict:
        d = {
            "id": self.id,
            "type": self.block_type,
            "lines": [self.start_line, self.end_line],
        }
        if self.statements:
            d["statements"] = [_statement_summary(s) for s in self.statements]
        return d


@dataclass
class CFGEdge:
    """
    Directed control transfer between two blocks.

    ``edge_type`` is one of: true, false, unconditional, back_edge, break,
    continue, iterate, exhausted, except, case. Branching edges carry the
    source text of their condition.
    """

    source_id: int
    target_id: int
    edge_type: str
    condition: str | None = None

    def to_dict(self) -> dict:
        d = {"from": self.source_id, "to": self.target_id, "type": self.edge_type}
        if self.condition:
            d["condition"] = self.condition
        return d


@dataclass
class CFGInfo:
    """
    Control flow graph of one function body or of module-level code.

    Blocks are listed in creation order. Neighbour lookups go through
    ``get_predecessors`` / ``get_successors``, which resolve ids to blocks.
    """

    function_name: str
    blocks: list[CFGBlock]
    edges: list[CFGEdge]
    entry_block_id: int
    exit_block_ids: list[int]
    cyclomatic_complexity: int
    _block_by_id_cache: dict[int, CFGBlock] | None = field(
        default=None, repr=False, compare=False
    )

    @property
    def _block_by_id(self) -> dict[int, CFGBlock]:
        if self._block_by_id_cache is None:
            self._block_by_id_cache = {b.id: b for b in self.blocks}
        return self._block_by_id_cache

    def block(self, block_id: int) -> CFGBlock:
        return self._block_by_id[block_id]

    def get_predecessors(self, block: CFGBlock) -> list[CFGBlock]:
        return [self._block_by_id[i] for i in block.predecessors]

    def get_successors(self, block: CFGBlock) -> list[CFGBlock]:
        return [self._block_by_id[i] for i in block.successors]

    def to_dict(self) -> dict:
        return {
            "function": self.function_name,
            "blocks": [b.to_dict() for b in self.blocks],
            "edges": [e.to_dict() for e in self.edges],
            "entry_block": self.entry_block_id,
            "exit_blocks": self.exit_block_ids,
            "cyclomatic_complexity": self.cyclomatic_complexity,
        }


def _statement_summary(stmt: ast.stmt) -> str:
    try:
        text = ast.unparse(stmt)
    except Exception:
        return type(stmt).__name__
    first_line = text.splitlines()[0] if text else ""
    return first_line


def _start(node: ast.AST) -> tuple[int, int]:
    return node.lineno, node.col_offset


def _end(node: ast.AST) -> tuple[int, int]:
    end_lineno = getattr(node, "end_lineno", None) or node.lineno
    end_col_offset = getattr(node, "end_col_offset", None)
    return end_lineno, node.col_offset if end_col_offset is None else end_col_offset


def _spanning(node: ast.AST, *parts: ast.AST) -> ast.AST:
    """Give a synthesized node the smallest span covering all ``parts``."""
    node.lineno, node.col_offset = min(_start(p) for p in parts)
    node.end_lineno, node.end_col_offset = max(_end(p) for p in parts)
    return node


def _binding_header(target: ast.expr | None, value: ast.expr) -> ast.stmt:
    """
    Header statement for ``for target in value`` / ``value as target``.

    The span runs over both parts whichever comes first in the source.
    """
    if target is None:
        return ast.copy_location(ast.Expr(value=value), value)
    header = ast.Assign(targets=[target], value=value, type_comment=None)
    return _spanning(header, target, value)


def _parameter_bindings(args: ast.arguments) -> list[ast.stmt]:
    """One ``param = None`` statement per parameter, located at the parameter."""
    params = [*args.posonlyargs, *args.args]
    if args.vararg:
        params.append(args.vararg)
    params.extend(args.kwonlyargs)
    if args.kwarg:
        params.append(args.kwarg)

    bindings = []
    for param in params:
        target = ast.copy_location(ast.Name(id=param.arg, ctx=ast.Store()), param)
        value = ast.copy_location(ast.Constant(value=None, kind=None), param)
        binding = ast.Assign(targets=[target], value=value, type_comment=None)
        bindings.append(ast.copy_location(binding, param))
    return bindings


# =============================================================================
# Building from ast
# =============================================================================


class PythonCFGBuilder(ast.NodeVisitor):
    """
    Statement visitor that lays a body out as basic blocks.

    ``current_block`` is where the next simple statement goes. Compound
    statements open new blocks and leave ``current_block`` at their merge
    point. One builder builds one graph.
    """

    def __init__(self):
        self.blocks: list[CFGBlock] = []
        self.edges: list[CFGEdge] = []
        self.current_block: CFGBlock | None = None
        self.entry_block_id: int | None = None
        self.exit_block_ids: list[int] = []

        # Innermost loop last: targets of continue / break
        self.loop_guard_stack: list[int] = []
        self.after_loop_stack: list[int] = []

        self.decision_points = 0

    def new_block(
        self, block_type: str, start_line: int, end_line: int | None = None
    ) -> CFGBlock:
        block = CFGBlock(
            id=len(self.blocks),
            start_line=start_line,
            end_line=end_line or start_line,
            block_type=block_type,
        )
        self.blocks.append(block)
        return block

    def add_edge(
        self,
        source_id: int,
        target_id: int,
        edge_type: str,
        condition: str | None = None,
    ):
        self.edges.append(CFGEdge(source_id, target_id, edge_type, condition))

    def build(self, func_node: ast.FunctionDef | ast.AsyncFunctionDef) -> CFGInfo:
        """Lay out one function's body, its parameters bound on entry."""
        return self._build(
            func_node.name,
            func_node.lineno,
            func_node.body,
            _parameter_bindings(func_node.args),
        )

    def build_module(self, module: ast.Module) -> CFGInfo:
        """Lay out a module's top-level statements."""
        start_line = module.body[0].lineno if module.body else 1
        return self._build("<module>", start_line, module.body)

    def _build(
        self,
        name: str,
        start_line: int,
        body: list[ast.stmt],
        bindings: list[ast.stmt] | None = None,
    ) -> CFGInfo:
        entry = self.new_block("entry", start_line)
        self.entry_block_id = entry.id
        self.current_block = entry
        for binding in bindings or []:
            self._append(binding)

        self._visit_body(body)

        # Falling off the end exits too
        last = self.current_block
        if last.id not in self.exit_block_ids:
            self.exit_block_ids.append(last.id)
            if last.block_type == "body":
                last.block_type = "exit"

        for edge in self.edges:
            source = self.blocks[edge.source_id]
            target = self.blocks[edge.target_id]
            if edge.source_id not in target.predecessors:
                target.predecessors.append(edge.source_id)
            if edge.target_id not in source.successors:
                source.successors.append(edge.target_id)

        return CFGInfo(
            function_name=name,
            blocks=self.blocks,
            edges=self.edges,
            entry_block_id=self.entry_block_id,
            exit_block_ids=self.exit_block_ids,
            cyclomatic_complexity=self.decision_points + 1,
        )

    def _visit_body(self, body: list[ast.stmt]):
        for stmt in body:
            self.visit(stmt)

    def _append(self, stmt: ast.stmt):
        block = self.current_block
        block.statements.append(stmt)
        end_line = getattr(stmt, "end_lineno", None) or stmt.lineno
        if end_line > block.end_line:
            block.end_line = end_line

    def _is_open(self, block: CFGBlock | None) -> bool:
        """Whether control can fall off the end of ``block``."""
        return block is not None and block.id not in self.exit_block_ids

    def _source_text(self, node: ast.expr) -> str:
        try:
            return ast.unparse(node)
        except Exception:
            return "<condition>"

    # Definitions are single statements: their bodies run elsewhere

    def visit_FunctionDef(self, node: ast.FunctionDef):
        self._append(node)

    def visit_AsyncFunctionDef(self, node: ast.AsyncFunctionDef):
        self._append(node)

    def visit_ClassDef(self, node: ast.ClassDef):
        self._append(node)

    def visit_If(self, node: ast.If):
        """Diamond: the test ends the current block, both arms meet after."""
        self.decision_points += 1

        self._append(ast.copy_location(ast.Expr(value=node.test), node.test))
        branch = self.current_block
        branch.block_type = "branch"
        condition = self._source_text(node.test)

        then_block = self.new_block("body", node.body[0].lineno)
        self.add_edge(branch.id, then_block.id, "true", condition)
        merge = self.new_block("body", node.end_lineno or node.lineno)

        self.current_block = then_block
        self._visit_body(node.body)
        if self._is_open(self.current_block):
            self.add_edge(self.current_block.id, merge.id, "unconditional")

        # elif chains arrive here as a nested If in orelse
        if node.orelse:
            else_block = self.new_block("body", node.orelse[0].lineno)
            self.add_edge(branch.id, else_block.id, "false", f"not ({condition})")
            self.current_block = else_block
            self._visit_body(node.orelse)
            if self._is_open(self.current_block):
                self.add_edge(self.current_block.id, merge.id, "unconditional")
        else:
            self.add_edge(branch.id, merge.id, "false", f"not ({condition})")

        self.current_block = merge

    def _visit_loop(
        self,
        node: ast.While | ast.For | ast.AsyncFor,
        header: ast.stmt,
        enter: tuple[str, str | None],
        leave: tuple[str, str | None],
    ):
        """Shared shape of while and for loops: guard, body, back edge, else."""
        self.decision_points += 1

        # The guard holds the header and is where every iteration starts
        guard = self.new_block("loop_header", node.lineno)
        self.add_edge(self.current_block.id, guard.id, "unconditional")
        self.current_block = guard
        self._append(header)

        after_loop = self.new_block("body", node.end_lineno or node.lineno)

        self.loop_guard_stack.append(guard.id)
        self.after_loop_stack.append(after_loop.id)

        body_start = node.body[0].lineno if node.body else node.lineno
        body = self.new_block("loop_body", body_start)
        self.add_edge(guard.id, body.id, *enter)

        self.current_block = body
        self._visit_body(node.body)

        # Body end loops back to the guard
        if self._is_open(self.current_block):
            self.add_edge(self.current_block.id, guard.id, "back_edge")

        self.loop_guard_stack.pop()
        self.after_loop_stack.pop()

        # The else clause runs when the loop ends without break
        if node.orelse:
            else_block = self.new_block("body", node.orelse[0].lineno)
            self.add_edge(guard.id, else_block.id, *leave)
            self.current_block = else_block
            self._visit_body(node.orelse)
            if self._is_open(self.current_block):
                self.add_edge(self.current_block.id, after_loop.id, "unconditional")
        else:
            self.add_edge(guard.id, after_loop.id, *leave)

        self.current_block = after_loop

    def visit_While(self, node: ast.While):
        """The guard re-evaluates the test on each pass."""
        condition = self._source_text(node.test)
        header = ast.copy_location(ast.Expr(value=node.test), node.test)
        self._visit_loop(
            node, header, ("true", condition), ("false", f"not ({condition})")
        )

    def visit_For(self, node: ast.For):
        """The guard rebinds the target from the iterator on each pass."""
        header = _binding_header(node.target, node.iter)
        target_str = self._source_text(node.target)
        iter_str = self._source_text(node.iter)
        self._visit_loop(
            node, header, ("iterate", f"{target_str} in {iter_str}"), ("exhausted", None)
        )

    def visit_AsyncFor(self, node: ast.AsyncFor):
        self.visit_For(node)

    def visit_With(self, node: ast.With):
        """One header statement per item, then the body inline."""
        for item in node.items:
            self._append(_binding_header(item.optional_vars, item.context_expr))
        self._visit_body(node.body)

    def visit_AsyncWith(self, node: ast.AsyncWith):
        self.visit_With(node)

    def visit_Try(self, node: ast.Try):
        """
        Handle try/except/else/finally.

        Handlers are entered from before the try body and from its end, which
        approximates an exception raised at the first or last statement.
        """
        before_try = self.current_block

        body = self.new_block("body", node.body[0].lineno)
        self.add_edge(before_try.id, body.id, "unconditional")
        self.current_block = body
        self._visit_body(node.body)
        body_end = self.current_block

        after_try = self.new_block("body", node.end_lineno or node.lineno)

        for handler in node.handlers:
            self.decision_points += 1
            handler_block = self.new_block("except", handler.lineno)
            condition = self._source_text(handler.type) if handler.type else None
            self.add_edge(before_try.id, handler_block.id, "except", condition)
            if self._is_open(body_end):
                self.add_edge(body_end.id, handler_block.id, "except", condition)

            self.current_block = handler_block
            if handler.type is not None:
                target = None
                if handler.name:
                    target = ast.Name(id=handler.name, ctx=ast.Store())
                    # The bound name has no node of its own: use the handler's start
                    ast.copy_location(target, handler)
                    target.end_lineno = handler.lineno
                    target.end_col_offset = handler.col_offset
                self._append(_binding_header(target, handler.type))
            self._visit_body(handler.body)
            if self._is_open(self.current_block):
                self.add_edge(self.current_block.id, after_try.id, "unconditional")

        if self._is_open(body_end):
            if node.orelse:
                else_block = self.new_block("body", node.orelse[0].lineno)
                self.add_edge(body_end.id, else_block.id, "unconditional")
                self.current_block = else_block
                self._visit_body(node.orelse)
                if self._is_open(self.current_block):
                    self.add_edge(self.current_block.id, after_try.id, "unconditional")
            else:
                self.add_edge(body_end.id, after_try.id, "unconditional")

        # Finally runs on the merged path
        self.current_block = after_try
        self._visit_body(node.finalbody)

    def visit_TryStar(self, node):
        self.visit_Try(node)

    def visit_Match(self, node: ast.Match):
        """Handle match statements - one branch per case."""
        self._append(ast.copy_location(ast.Expr(value=node.subject), node.subject))
        self.current_block.block_type = "branch"
        branch_block_id = self.current_block.id

        after_match = self.new_block("body", node.end_lineno or node.lineno)

        for case in node.cases:
            self.decision_points += 1
            case_block = self.new_block("body", case.pattern.lineno)
            self.add_edge(
                branch_block_id,
                case_block.id,
                "case",
                self._source_text(case.pattern),
            )
            self.current_block = case_block
            self._visit_body(case.body)
            if self._is_open(self.current_block):
                self.add_edge(self.current_block.id, after_match.id, "unconditional")

        # No case matched
        self.add_edge(branch_block_id, after_match.id, "false")
        self.current_block = after_match

    def visit_Return(self, node: ast.Return):
        """Ends the block as an exit."""
        self._append(node)
        self.current_block.block_type = "return"
        self.exit_block_ids.append(self.current_block.id)

        # Anything after the return lands in a block nothing reaches
        self.current_block = self.new_block("body", node.lineno)

    def visit_Break(self, node: ast.Break):
        """Jumps past the innermost loop, skipping its else clause."""
        if self.after_loop_stack:
            self.add_edge(self.current_block.id, self.after_loop_stack[-1], "break")
            # Dead code after the jump
            self.current_block = self.new_block("body", node.lineno)

    def visit_Continue(self, node: ast.Continue):
        """Jumps back to the innermost loop guard."""
        if self.loop_guard_stack:
            self.add_edge(self.current_block.id, self.loop_guard_stack[-1], "continue")
            # Dead code after the jump
            self.current_block = self.new_block("body", node.lineno)

    def generic_visit(self, node: ast.AST):
        """Simple statements go into the current block as they are."""
        self._append(node)


def extract_python_cfg(source: str, function_name: str | None = None) -> CFGInfo:
    """
    Extract CFG from Python source code.

    Args:
        source: Python source code
        function_name: Name of the function to extract CFG for; the module's
            top-level code when None

    Returns:
        CFGInfo with blocks, edges and cyclomatic complexity

    Raises:
        ValueError: If function not found in source
        SyntaxError: If the source doesn't parse
    """
    tree = ast.parse(source)
    return build_cfg(tree, function_name)


def build_cfg(tree: ast.Module, function_name: str | None = None) -> CFGInfo:
    """Build the CFG for an already-parsed module (or one function in it)."""
    if function_name is None:
        return PythonCFGBuilder().build_module(tree)

    for node in ast.walk(tree):
        if isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef)):
            if node.name == function_name:
                return PythonCFGBuilder().build(node)

    raise ValueError(f"Function '{function_name}' not found in source")
