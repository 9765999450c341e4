"""
Promisifier
===========

Rewrites callback-style async functions so they can be called either way:

    async def fetch(url, cb):
        data = await download(url)
        cb(None, data)

    fetch(url, lambda err, data: ...)   # callback style
    data = await fetch(url)             # future style

A function qualifies when it is declared ``async`` and its last parameter is
named ``cb`` (see ``matcher``). The rewritten function is an ordinary
function returning a ``Deferred``; its body runs in an inner coroutine whose
``cb`` is a wrapped callback that settles the deferred and forwards to the
caller's own callback when one was passed.

Three entry points, mirroring the layers of the rewrite:

- ``promisify_function``: the rule applied to a single function node
- ``Promisifier.transform`` / ``transform_source``: a whole module
- ``promisify``: a decorator recompiling a live function
"""

import ast
import copy
import logging
from collections import defaultdict
from typing import Callable, Optional

from ..errors import ConventionMismatchError, MalformedFunctionError
from ..utils.helpers import describe, function_tree, source_filename
from .matcher import DEFAULT_CALLBACK_NAME, CallbackConvention, matches, signature_params
from .scope import NameAllocator, bound_names, contains_yield
from .template import ExpansionNames, expand

logger = logging.getLogger(__name__)


def _with_optional_callback(args: ast.arguments) -> ast.arguments:
    """Copy of a signature whose trailing callback parameter defaults to None."""
    args = copy.copy(args)
    if args.kwonlyargs:
        args.kw_defaults = list(args.kw_defaults[:-1]) + [ast.Constant(value=None)]
    else:
        args.defaults = list(args.defaults) + [ast.Constant(value=None)]
    return args


def promisify_function(
    node: ast.AST,
    allocator: Optional[NameAllocator],
    convention: Optional[CallbackConvention] = None,
) -> ast.AST:
    """
    Apply the rewrite to one function node.

    Returns ``node`` itself when it does not follow the convention, otherwise
    a new, non-async ``ast.FunctionDef`` with the same name, decorators and
    parameters (the callback now defaulting to ``None``) and the expanded body.
    """
    convention = convention or CallbackConvention()
    if not matches(node, convention):
        return node

    if allocator is None:
        raise MalformedFunctionError(f"No name allocator available for {describe(node)}")
    body = getattr(node, 'body', None)
    if not body:
        raise MalformedFunctionError(f"Function {describe(node)} has no body")
    if contains_yield(body):
        raise MalformedFunctionError(
            f"Async generator {describe(node)} cannot be promisified"
        )

    outer_params = {param.arg for param in signature_params(node.args)[:-1]}
    rebound = bound_names(body) & outer_params

    names = ExpansionNames.allocate(allocator, convention)
    fields = dict(
        name=node.name,
        args=_with_optional_callback(node.args),
        body=expand(body, names, convention, nonlocals=rebound, location=node),
        decorator_list=node.decorator_list,
        returns=None,
        type_comment=None,
    )
    if 'type_params' in ast.FunctionDef._fields:
        fields['type_params'] = list(getattr(node, 'type_params', None) or [])
    wrapper = ast.FunctionDef(**fields)

    ast.copy_location(wrapper, node)
    ast.fix_missing_locations(wrapper)
    return wrapper


class PromisifyTransformer(ast.NodeTransformer):
    """
    Applies ``promisify_function`` to every matching function of a tree.

    Functions are rewritten after their children, so nested matches are
    handled and a replacement is never visited again.
    """

    def __init__(
        self,
        allocator: NameAllocator,
        convention: Optional[CallbackConvention] = None,
        stats: Optional[dict] = None,
    ):
        self.allocator = allocator
        self.convention = convention or CallbackConvention()
        self.stats = stats if stats is not None else defaultdict(int)

    def visit_AsyncFunctionDef(self, node: ast.AsyncFunctionDef) -> ast.AST:
        self.generic_visit(node)

        if not matches(node, self.convention):
            self.stats['functions_skipped'] += 1
            logger.debug(f"Skipping {describe(node)}: no trailing '{self.convention.name}' parameter")
            return node

        wrapper = promisify_function(node, self.allocator, self.convention)
        self.stats['functions_promisified'] += 1
        logger.debug(f"Promisified {describe(node)}")
        return wrapper


class Promisifier:
    """
    Rewrites callback-style async functions in trees, sources or live functions.

    Usage:
        >>> promisifier = Promisifier()
        >>> print(promisifier.transform_source("async def f(x, cb):\\n    cb(None, x)"))
        >>> async def load(key, cb):
        ...     cb(None, await store.get(key))
        >>> load = promisifier.promisify(load)
        >>> value = await load('k')
    """

    def __init__(
        self,
        convention: Optional[CallbackConvention] = None,
        enable_logging: bool = False,
    ):
        self.convention = convention or CallbackConvention()
        self.stats = defaultdict(int)

        if enable_logging:
            logging.basicConfig(level=logging.DEBUG)

    def transform(self, tree: ast.AST) -> ast.AST:
        """Rewrite every matching function of ``tree`` in place and return it."""
        allocator = NameAllocator.for_tree(tree)
        tree = PromisifyTransformer(allocator, self.convention, self.stats).visit(tree)
        ast.fix_missing_locations(tree)
        return tree

    def transform_source(self, source: str) -> str:
        """Return ``source`` with every matching function rewritten."""
        tree = ast.parse(source)
        return ast.unparse(self.transform(tree))

    def promisify(self, func: Callable) -> Callable:
        """
        Recompile a live async function in its promisified form.

        The function's decorators are not re-applied, so ``promisify`` should
        sit closest to the ``def``. Closures cannot be recompiled.
        """
        tree, node = function_tree(func)
        if func.__code__.co_freevars:
            raise TypeError(
                f"Cannot promisify closure {func.__qualname__} "
                f"(free variables: {', '.join(func.__code__.co_freevars)})"
            )
        if not matches(node, self.convention):
            raise ConventionMismatchError(
                f"{func.__qualname__} must be an async function whose last "
                f"parameter is '{self.convention.name}'"
            )

        tree = self.transform(tree)
        code = compile(tree, source_filename(func), 'exec')

        # Definitions land in a scratch namespace; lookups go to the real globals
        namespace = {}
        exec(code, func.__globals__, namespace)

        promisified = namespace[func.__name__]
        promisified.__qualname__ = func.__qualname__
        promisified.__cbpromise_original__ = func
        promisified.__cbpromise_promisified__ = True
        return promisified

    def get_promisified_source(self, func: Callable) -> str:
        """Return the rewritten source of a live function as a string."""
        tree, _ = function_tree(func)
        return ast.unparse(self.transform(tree))


# ---------------------------------------------------------------------------
# Module-level convenience API
# ---------------------------------------------------------------------------

_default_promisifier = Promisifier()


def _promisifier_for(callback_name: str) -> Promisifier:
    if callback_name == DEFAULT_CALLBACK_NAME:
        return _default_promisifier
    return Promisifier(CallbackConvention(name=callback_name))


def promisify(func: Callable = None, *, callback_name: str = DEFAULT_CALLBACK_NAME) -> Callable:
    """
    Decorator turning a callback-style async function into a dual-mode one.

    Usage:
        from cbpromise import promisify

        @promisify
        async def read_config(path, cb):
            cb(None, await load(path))

        config = await read_config('app.toml')
        read_config('app.toml', lambda err, config: ...)

        @promisify(callback_name='done')
        async def ping(host, done):
            ...
    """
    if func is None:
        return lambda f: promisify(f, callback_name=callback_name)
    return _promisifier_for(callback_name).promisify(func)


def transform_source(source: str, *, callback_name: str = DEFAULT_CALLBACK_NAME) -> str:
    """Rewrite every callback-style async function in a module's source."""
    return _promisifier_for(callback_name).transform_source(source)
