"""
Callback Convention Matcher
===========================

Decides whether a function definition follows the callback convention:

    async def fetch(url, cb):
        ...

The function must be declared ``async`` and its last parameter must be a
plain identifier named exactly like the convention's callback name. Nothing
else about the function (its name, its other parameters, its body) matters.
"""

import ast
import keyword
from dataclasses import dataclass
from typing import List, Optional

DEFAULT_CALLBACK_NAME = 'cb'

# Parameter names of the generated wrapped callback
RESERVED_NAMES = frozenset({'err', 'args'})


@dataclass(frozen=True)
class CallbackConvention:
    """
    The callback parameter convention the rewrite looks for.

    Usage:
        >>> convention = CallbackConvention()
        >>> convention.matches(ast.parse("async def f(x, cb): pass").body[0])
        True
        >>> CallbackConvention(name='callback').name
        'callback'
    """
    name: str = DEFAULT_CALLBACK_NAME

    def __post_init__(self):
        if not isinstance(self.name, str) or not self.name.isidentifier():
            raise ValueError(f"Callback name must be an identifier, got {self.name!r}")
        if keyword.iskeyword(self.name):
            raise ValueError(f"Callback name cannot be a keyword: {self.name!r}")
        if self.name in RESERVED_NAMES:
            raise ValueError(
                f"Callback name {self.name!r} clashes with the wrapped callback's parameters"
            )

    @property
    def wrapped_hint(self) -> str:
        """Hint used to allocate the wrapped callback's name (``_cb`` by default)."""
        return self.name

    def matches(self, node: ast.AST) -> bool:
        return matches(node, self)


def signature_params(args: ast.arguments) -> List[ast.arg]:
    """All parameters of a signature, in declaration order."""
    params = list(args.posonlyargs) + list(args.args)
    if args.vararg is not None:
        params.append(args.vararg)
    params.extend(args.kwonlyargs)
    if args.kwarg is not None:
        params.append(args.kwarg)
    return params


def has_default(args: ast.arguments, param: ast.arg) -> bool:
    """Whether a positional or keyword-only parameter carries a default value."""
    positional = list(args.posonlyargs) + list(args.args)
    if param in positional:
        first_defaulted = len(positional) - len(args.defaults)
        return positional.index(param) >= first_defaulted
    if param in args.kwonlyargs:
        return args.kw_defaults[args.kwonlyargs.index(param)] is not None
    return False


def last_parameter(node: ast.AST) -> Optional[ast.arg]:
    """The final parameter of a function node, or None when it has none."""
    args = getattr(node, 'args', None)
    if not isinstance(args, ast.arguments):
        return None
    params = signature_params(args)
    return params[-1] if params else None


def is_plain_parameter(args: ast.arguments, param: ast.arg) -> bool:
    """
    A plain parameter is a positional or keyword-only name without a default.

    ``*args``, ``**kwargs`` and defaulted parameters are patterns rather than
    bare identifiers and never satisfy the convention.
    """
    if param is args.vararg or param is args.kwarg:
        return False
    return not has_default(args, param)


def matches(node: ast.AST, convention: Optional[CallbackConvention] = None) -> bool:
    """Return True when ``node`` is an async function ending in the callback parameter."""
    convention = convention or CallbackConvention()

    # Only promisify functions marked as async
    if not isinstance(node, ast.AsyncFunctionDef):
        return False

    param = last_parameter(node)
    if param is None:
        return False
    return param.arg == convention.name and is_plain_parameter(node.args, param)
