"""Utility helpers for cbpromise."""

import ast
import inspect
import textwrap
from typing import Callable, Tuple, Union

FunctionNode = Union[ast.FunctionDef, ast.AsyncFunctionDef]


def function_tree(func: Callable) -> Tuple[ast.Module, FunctionNode]:
    """
    Parse the source of a live function.

    Returns the module tree and the function's definition node. Line numbers
    are shifted to match the defining file and decorators are removed, so the
    tree can be compiled and executed again without re-applying them.
    """
    if not inspect.isfunction(func):
        raise TypeError(f"Expected a function, got {type(func).__name__}")

    source = textwrap.dedent(inspect.getsource(func))
    tree = ast.parse(source)
    ast.increment_lineno(tree, func.__code__.co_firstlineno - 1)

    node = tree.body[0] if tree.body else None
    if not isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef)) or node.name != func.__name__:
        raise TypeError(f"Cannot locate the definition of {func.__qualname__}")

    node.decorator_list = []
    return tree, node


def source_filename(func: Callable) -> str:
    """File to attribute recompiled code to."""
    try:
        return inspect.getsourcefile(func) or f'<cbpromise:{func.__name__}>'
    except TypeError:
        return f'<cbpromise:{func.__name__}>'


def describe(node: ast.AST) -> str:
    """Short human-readable label for a function node, used in messages."""
    name = getattr(node, 'name', '<lambda>')
    line = getattr(node, 'lineno', '?')
    return f"{name} (line {line})"
