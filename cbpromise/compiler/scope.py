"""
Scope Analysis & Fresh Names
============================

Identifier hygiene for injected helpers. The rewrite introduces local
functions and variables (``_fn``, ``_resolve``, ``_reject``, ...) that must
never shadow, or be shadowed by, a name the user's code binds or reads.

``NameAllocator`` records every identifier that appears in a tree and hands
out names of the form ``_<hint>``, ``_<hint>2``, ``_<hint>3``... skipping
anything already taken, including names it generated before.
"""

import ast
import builtins
import re
from typing import Iterable, Iterator, List, Optional, Set

_SCOPE_NODES = (ast.FunctionDef, ast.AsyncFunctionDef, ast.Lambda, ast.ClassDef)
_BUILTIN_NAMES = frozenset(dir(builtins))


def _pattern_names(node: ast.AST) -> Iterator[str]:
    """Capture names bound by a match-statement pattern."""
    for child in ast.walk(node):
        if isinstance(child, ast.MatchAs) and child.name:
            yield child.name
        elif isinstance(child, ast.MatchStar) and child.name:
            yield child.name
        elif isinstance(child, ast.MatchMapping) and child.rest:
            yield child.rest


def collect_identifiers(tree: ast.AST) -> Set[str]:
    """Every identifier bound or referenced anywhere in ``tree``."""
    names = set()
    for node in ast.walk(tree):
        if isinstance(node, ast.Name):
            names.add(node.id)
        elif isinstance(node, ast.arg):
            names.add(node.arg)
        elif isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef, ast.ClassDef)):
            names.add(node.name)
        elif isinstance(node, ast.alias):
            # `import a.b` binds `a`
            names.add((node.asname or node.name).split('.')[0])
        elif isinstance(node, (ast.Global, ast.Nonlocal)):
            names.update(node.names)
        elif isinstance(node, ast.ExceptHandler) and node.name:
            names.add(node.name)
        elif isinstance(node, ast.match_case):
            names.update(_pattern_names(node.pattern))
    return names


class _BindingCollector(ast.NodeVisitor):
    """Names bound in one function's own scope, ignoring nested scopes."""

    def __init__(self):
        self.bound: Set[str] = set()
        self.declared: Set[str] = set()

    def visit_Name(self, node: ast.Name):
        if isinstance(node.ctx, (ast.Store, ast.Del)):
            self.bound.add(node.id)

    def visit_FunctionDef(self, node):
        self.bound.add(node.name)
        # Decorators and defaults are evaluated in the enclosing scope
        for expr in node.decorator_list:
            self.visit(expr)
        self.visit(node.args)

    visit_AsyncFunctionDef = visit_FunctionDef

    def visit_ClassDef(self, node: ast.ClassDef):
        self.bound.add(node.name)
        for expr in node.decorator_list + node.bases + node.keywords:
            self.visit(expr)

    def visit_Lambda(self, node: ast.Lambda):
        self.visit(node.args)

    def visit_arguments(self, node: ast.arguments):
        for expr in node.defaults + [d for d in node.kw_defaults if d is not None]:
            self.visit(expr)

    def visit_comprehension(self, node: ast.comprehension):
        # Loop targets are local to the comprehension; walrus inside is not.
        self.visit(node.iter)
        for cond in node.ifs:
            self.visit(cond)

    def visit_alias(self, node: ast.alias):
        if node.name != '*':
            self.bound.add((node.asname or node.name).split('.')[0])

    def visit_ExceptHandler(self, node: ast.ExceptHandler):
        if node.name:
            self.bound.add(node.name)
        self.generic_visit(node)

    def visit_match_case(self, node: ast.match_case):
        self.bound.update(_pattern_names(node.pattern))
        self.generic_visit(node)

    def visit_Global(self, node: ast.Global):
        self.declared.update(node.names)

    visit_Nonlocal = visit_Global


def bound_names(body: Iterable[ast.stmt]) -> Set[str]:
    """
    Names a statement list binds in its own function scope.

    Names declared ``global`` or ``nonlocal`` are excluded, since binding
    them does not create a local.
    """
    collector = _BindingCollector()
    for stmt in body:
        collector.visit(stmt)
    return collector.bound - collector.declared


def own_scope_nodes(body: Iterable[ast.stmt]) -> Iterator[ast.AST]:
    """Walk a statement list without descending into nested function or class scopes."""
    stack: List[ast.AST] = list(body)
    while stack:
        node = stack.pop()
        yield node
        if isinstance(node, _SCOPE_NODES):
            continue
        stack.extend(ast.iter_child_nodes(node))


def contains_yield(body: Iterable[ast.stmt]) -> bool:
    """Whether a function body is a generator body (``yield`` at its own level)."""
    return any(isinstance(node, (ast.Yield, ast.YieldFrom)) for node in own_scope_nodes(body))


def to_identifier(hint: str) -> str:
    """Turn an arbitrary hint into an identifier stem (``'my-fn2'`` -> ``'my_fn'``)."""
    stem = re.sub(r'\W', '_', str(hint))
    stem = stem.lstrip('_')
    stem = re.sub(r'\d+$', '', stem)
    return stem or 'ref'


class NameAllocator:
    """
    Hands out identifiers unique within a tree.

    Usage:
        >>> allocator = NameAllocator.for_tree(ast.parse("_fn = 1"))
        >>> allocator.fresh_name('fn')
        '_fn2'
        >>> allocator.fresh_name('fn')
        '_fn3'
    """

    def __init__(self, taken: Optional[Iterable[str]] = None):
        self._taken: Set[str] = set(taken or ())
        self._generated: List[str] = []

    @classmethod
    def for_tree(cls, tree: ast.AST) -> 'NameAllocator':
        return cls(collect_identifiers(tree))

    @property
    def generated(self) -> List[str]:
        """Names handed out so far, in allocation order."""
        return list(self._generated)

    def is_taken(self, name: str) -> bool:
        return name in self._taken or name in _BUILTIN_NAMES

    def reserve(self, names: Iterable[str]):
        """Mark names as in use without generating them."""
        self._taken.update(names)

    def fresh_name(self, hint: str) -> str:
        stem = to_identifier(hint)
        i = 1
        while True:
            candidate = f"_{stem}{i if i > 1 else ''}"
            if not self.is_taken(candidate):
                break
            i += 1
        self._taken.add(candidate)
        self._generated.append(candidate)
        return candidate
