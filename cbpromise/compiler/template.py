"""
Promise Template Expander
=========================

Builds the replacement body of a promisified function as AST nodes.

For ``async def fetch(url, cb): <body>`` the expansion reads:

    from cbpromise.runtime import Deferred as _Deferred

    async def _fn(cb):
        <body>

    def _executor(_resolve, _reject):
        def _cb(err=None, *args):
            if cb is not None:
                cb(err, *args)
            if err:
                _reject(err)
            else:
                _resolve(*args)
        _cb.resolve = lambda *args: _cb(None, *args)
        _cb.reject = _cb
        return _fn(_cb)

    return _Deferred(_executor)

Inside ``_fn`` the original body still sees ``cb``, now bound to the wrapped
callback. Inside ``_cb``, ``cb`` resolves to the wrapper's own parameter,
i.e. whatever callback the caller supplied.

Nodes are constructed directly rather than parsed from text so user code is
never re-parsed and injected names cannot be captured by it.
"""

import ast
import copy
from dataclasses import dataclass
from typing import Iterable, List, Optional

from .matcher import CallbackConvention

RUNTIME_MODULE = 'cbpromise.runtime'
DEFERRED_CLASS = 'Deferred'

ERR_PARAM = 'err'
ARGS_PARAM = 'args'


@dataclass(frozen=True)
class ExpansionNames:
    """Fresh identifiers used by one expansion."""
    fn: str
    resolve: str
    reject: str
    callback: str
    executor: str
    deferred: str

    @classmethod
    def allocate(cls, allocator, convention: CallbackConvention) -> 'ExpansionNames':
        return cls(
            fn=allocator.fresh_name('fn'),
            resolve=allocator.fresh_name('resolve'),
            reject=allocator.fresh_name('reject'),
            callback=allocator.fresh_name(convention.wrapped_hint),
            executor=allocator.fresh_name('executor'),
            deferred=allocator.fresh_name(DEFERRED_CLASS),
        )


# ---------------------------------------------------------------------------
# Node builders
# ---------------------------------------------------------------------------

def _load(name: str) -> ast.Name:
    return ast.Name(id=name, ctx=ast.Load())


def _call(func: str, *args: ast.expr) -> ast.Call:
    return ast.Call(func=_load(func), args=list(args), keywords=[])


def _arguments(
    params: Iterable[str] = (),
    vararg: Optional[str] = None,
    defaults: Iterable[ast.expr] = (),
) -> ast.arguments:
    return ast.arguments(
        posonlyargs=[],
        args=[ast.arg(arg=p, annotation=None) for p in params],
        vararg=ast.arg(arg=vararg, annotation=None) if vararg else None,
        kwonlyargs=[],
        kw_defaults=[],
        kwarg=None,
        defaults=list(defaults),
    )


def _function_def(cls, name: str, args: ast.arguments, body: List[ast.stmt]):
    fields = dict(
        name=name,
        args=args,
        body=body,
        decorator_list=[],
        returns=None,
        type_comment=None,
    )
    if 'type_params' in cls._fields:
        fields['type_params'] = []
    return cls(**fields)


def _forward_call(func: str) -> ast.Call:
    """``func(err, *args)``"""
    return _call(func, _load(ERR_PARAM), ast.Starred(value=_load(ARGS_PARAM), ctx=ast.Load()))


def _set_attribute(target: str, attr: str, value: ast.expr) -> ast.Assign:
    return ast.Assign(
        targets=[ast.Attribute(value=_load(target), attr=attr, ctx=ast.Store())],
        value=value,
    )


def docstring_of(body: List[ast.stmt]) -> Optional[ast.Expr]:
    """The leading docstring statement of a body, if any."""
    if body and isinstance(body[0], ast.Expr):
        value = body[0].value
        if isinstance(value, ast.Constant) and isinstance(value.value, str):
            return body[0]
    return None


# ---------------------------------------------------------------------------
# Expansion
# ---------------------------------------------------------------------------

def build_wrapped_callback(names: ExpansionNames, convention: CallbackConvention) -> List[ast.stmt]:
    """
    The wrapped callback and its ``resolve``/``reject`` conveniences.

    The caller's callback is optional: it is forwarded ``(err, *args)`` only
    when one was supplied, then the deferred settles from ``err``.
    """
    body = [
        ast.If(
            test=ast.Compare(
                left=_load(convention.name),
                ops=[ast.IsNot()],
                comparators=[ast.Constant(value=None)],
            ),
            body=[ast.Expr(value=_forward_call(convention.name))],
            orelse=[],
        ),
        ast.If(
            test=_load(ERR_PARAM),
            body=[ast.Expr(value=_call(names.reject, _load(ERR_PARAM)))],
            orelse=[ast.Expr(value=_call(
                names.resolve,
                ast.Starred(value=_load(ARGS_PARAM), ctx=ast.Load()),
            ))],
        ),
    ]
    wrapped = _function_def(
        ast.FunctionDef,
        names.callback,
        _arguments([ERR_PARAM], vararg=ARGS_PARAM, defaults=[ast.Constant(value=None)]),
        body,
    )

    # resolve: the wrapped callback with err pre-filled as None
    resolve_shortcut = ast.Lambda(
        args=_arguments(vararg=ARGS_PARAM),
        body=_call(
            names.callback,
            ast.Constant(value=None),
            ast.Starred(value=_load(ARGS_PARAM), ctx=ast.Load()),
        ),
    )
    return [
        wrapped,
        _set_attribute(names.callback, 'resolve', resolve_shortcut),
        _set_attribute(names.callback, 'reject', _load(names.callback)),
    ]


def build_executor(names: ExpansionNames, convention: CallbackConvention) -> ast.FunctionDef:
    """The settlement routine handed to the deferred's constructor."""
    body = build_wrapped_callback(names, convention)
    body.append(ast.Return(value=_call(names.fn, _load(names.callback))))
    return _function_def(
        ast.FunctionDef,
        names.executor,
        _arguments([names.resolve, names.reject]),
        body,
    )


def expand(
    body: List[ast.stmt],
    names: ExpansionNames,
    convention: Optional[CallbackConvention] = None,
    nonlocals: Iterable[str] = (),
    location: Optional[ast.AST] = None,
) -> List[ast.stmt]:
    """
    Build the replacement body around ``body``.

    ``body`` is moved into the inner async function as-is. ``nonlocals``
    lists outer parameters the body rebinds; they are declared ``nonlocal``
    so the moved body keeps sharing them with the wrapper.

    New statements take their position from ``location``, defaulting to the
    first statement of ``body``, so the result can be unparsed or compiled
    directly.
    """
    convention = convention or CallbackConvention()

    replacement: List[ast.stmt] = []
    docstring = docstring_of(body)
    if docstring is not None:
        replacement.append(copy.deepcopy(docstring))

    replacement.append(ast.ImportFrom(
        module=RUNTIME_MODULE,
        names=[ast.alias(name=DEFERRED_CLASS, asname=names.deferred)],
        level=0,
    ))

    inner_body = list(body)
    shared = sorted(set(nonlocals))
    if shared:
        inner_body.insert(0, ast.Nonlocal(names=shared))
    replacement.append(_function_def(
        ast.AsyncFunctionDef,
        names.fn,
        _arguments([convention.name]),
        inner_body,
    ))

    replacement.append(build_executor(names, convention))
    replacement.append(ast.Return(value=_call(names.deferred, _load(names.executor))))

    if location is None and body:
        location = body[0]
    for stmt in replacement:
        if location is not None and not hasattr(stmt, 'lineno'):
            ast.copy_location(stmt, location)
        ast.fix_missing_locations(stmt)
    return replacement
