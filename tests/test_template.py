"""
Tests for the promise template expander.

Validates:
  - The replacement body has the documented structure
  - Injected names are used consistently in every position
  - The original body is moved into the inner coroutine untouched
"""

import ast
from cbpromise.compiler.matcher import CallbackConvention
from cbpromise.compiler.scope import NameAllocator
from cbpromise.compiler.template import (
    ExpansionNames,
    RUNTIME_MODULE,
    docstring_of,
    expand,
)


CANONICAL = ExpansionNames(
    fn='_fn',
    resolve='_resolve',
    reject='_reject',
    callback='_cb',
    executor='_executor',
    deferred='_Deferred',
)


def original_body():
    return ast.parse("data = await load(url)\ncb(None, data)").body


def names_in(nodes):
    found = set()
    for node in nodes:
        for child in ast.walk(node):
            if isinstance(child, ast.Name):
                found.add(child.id)
            elif isinstance(child, ast.arg):
                found.add(child.arg)
            elif isinstance(child, (ast.FunctionDef, ast.AsyncFunctionDef)):
                found.add(child.name)
            elif isinstance(child, ast.alias):
                found.add(child.asname or child.name)
    return found


# ---------- Structure ----------

class TestExpandStructure:
    def setup_method(self):
        self.body = original_body()
        self.replacement = expand(self.body, CANONICAL)

    def test_statement_kinds(self):
        kinds = [type(stmt) for stmt in self.replacement]
        assert kinds == [ast.ImportFrom, ast.AsyncFunctionDef, ast.FunctionDef, ast.Return]

    def test_runtime_import(self):
        stmt = self.replacement[0]
        assert stmt.module == RUNTIME_MODULE
        assert [(a.name, a.asname) for a in stmt.names] == [('Deferred', '_Deferred')]

    def test_inner_function_takes_callback(self):
        inner = self.replacement[1]
        assert inner.name == '_fn'
        assert [a.arg for a in inner.args.args] == ['cb']
        assert inner.args.vararg is None

    def test_body_moved_verbatim(self):
        inner = self.replacement[1]
        assert inner.body[0] is self.body[0]
        assert inner.body[1] is self.body[1]
        assert len(inner.body) == 2

    def test_executor_signature(self):
        executor = self.replacement[2]
        assert executor.name == '_executor'
        assert [a.arg for a in executor.args.args] == ['_resolve', '_reject']

    def test_wrapped_callback(self):
        wrapped = self.replacement[2].body[0]
        assert isinstance(wrapped, ast.FunctionDef)
        assert wrapped.name == '_cb'
        assert [a.arg for a in wrapped.args.args] == ['err']
        assert wrapped.args.vararg.arg == 'args'

    def test_wrapped_callback_forwards_then_settles(self):
        wrapped = self.replacement[2].body[0]
        forward, settle = wrapped.body
        assert ast.unparse(forward.test) == 'cb is not None'
        assert ast.unparse(forward.body[0]) == 'cb(err, *args)'
        assert ast.unparse(settle.test) == 'err'
        assert ast.unparse(settle.body[0]) == '_reject(err)'
        assert ast.unparse(settle.orelse[0]) == '_resolve(*args)'

    def test_convenience_properties(self):
        executor = self.replacement[2]
        resolve_assign, reject_assign = executor.body[1], executor.body[2]
        assert ast.unparse(resolve_assign) == '_cb.resolve = lambda *args: _cb(None, *args)'
        assert ast.unparse(reject_assign) == '_cb.reject = _cb'

    def test_new_nodes_located(self):
        first_line = self.body[0].lineno
        for stmt in self.replacement:
            for child in ast.walk(stmt):
                if 'lineno' in child._attributes:
                    assert hasattr(child, 'lineno'), ast.dump(child)
        assert self.replacement[0].lineno == first_line
        assert self.replacement[-1].lineno == first_line

    def test_explicit_location(self):
        anchor = ast.parse("async def fetch(url, cb):\n    pass").body[0]
        replacement = expand(original_body(), CANONICAL, location=anchor)
        assert replacement[0].lineno == anchor.lineno
        assert replacement[2].col_offset == anchor.col_offset
        source = ast.unparse(ast.Module(body=replacement, type_ignores=[]))
        assert source.endswith('return _Deferred(_executor)')

    def test_executor_starts_inner_function(self):
        executor = self.replacement[2]
        assert ast.unparse(executor.body[-1]) == 'return _fn(_cb)'

    def test_returns_deferred(self):
        assert ast.unparse(self.replacement[-1]) == 'return _Deferred(_executor)'


# ---------- Names ----------

class TestExpansionNames:
    def test_allocate_canonical(self):
        names = ExpansionNames.allocate(NameAllocator(), CallbackConvention())
        assert names == CANONICAL

    def test_allocate_avoids_collisions(self):
        allocator = NameAllocator(['_fn', '_resolve', '_reject', '_cb'])
        names = ExpansionNames.allocate(allocator, CallbackConvention())
        assert (names.fn, names.resolve, names.reject, names.callback) == (
            '_fn2', '_resolve2', '_reject2', '_cb2'
        )

    def test_renamed_helpers_used_everywhere(self):
        allocator = NameAllocator(['_fn', '_resolve', '_reject'])
        names = ExpansionNames.allocate(allocator, CallbackConvention())
        used = names_in(expand(original_body(), names))
        assert {'_fn2', '_resolve2', '_reject2'} <= used
        assert not {'_fn', '_resolve', '_reject'} & used

    def test_custom_convention(self):
        convention = CallbackConvention(name='done')
        names = ExpansionNames.allocate(NameAllocator(), convention)
        assert names.callback == '_done'
        replacement = expand(ast.parse("done(None, 1)").body, names, convention)
        assert [a.arg for a in replacement[1].args.args] == ['done']
        assert 'cb' not in names_in(replacement)


# ---------- Python-specific additions ----------

class TestExpandExtras:
    def test_docstring_copied_to_wrapper(self):
        body = ast.parse('"""Fetch a page."""\ncb(None, 1)').body
        replacement = expand(body, CANONICAL)
        assert docstring_of(replacement).value.value == 'Fetch a page.'
        assert replacement[0] is not body[0]
        assert replacement[2].body[0] is body[0]

    def test_no_docstring(self):
        assert docstring_of(original_body()) is None

    def test_nonlocal_for_rebound_parameters(self):
        body = ast.parse("url = url.strip()\ncb(None, url)").body
        inner = expand(body, CANONICAL, nonlocals=['url'])[1]
        assert isinstance(inner.body[0], ast.Nonlocal)
        assert inner.body[0].names == ['url']
        assert inner.body[1] is body[0]

    def test_no_nonlocal_by_default(self):
        inner = expand(original_body(), CANONICAL)[1]
        assert not any(isinstance(stmt, ast.Nonlocal) for stmt in inner.body)
