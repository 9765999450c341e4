"""
cbpromise: Dual-Mode Callback / Future Functions
================================================

cbpromise rewrites asynchronous functions written against the completion
callback convention so that callers may either pass a callback or await the
returned future, without hand-written bridging code in every function.

A function qualifies when it is ``async`` and its last parameter is named
``cb``. Its rewritten form returns a ``Deferred`` (an ``asyncio.Future``)
and still invokes the caller's callback with ``(err, *results)``.

Core Components:
    - compiler.matcher: which functions qualify
    - compiler.scope: collision-free names for injected helpers
    - compiler.template: the replacement body
    - compiler.promisifier: the rule, tree walk and decorator
    - runtime: the deferred result the rewritten functions return

Usage:
    >>> import cbpromise
    >>> @cbpromise.promisify
    ... async def fetch(url, cb):
    ...     cb(None, await download(url))
    >>> page = await fetch('https://example.org')
    >>> fetch('https://example.org', lambda err, page: print(err, page))

    >>> cbpromise.transform_source(open('legacy.py').read())
"""

__version__ = "1.0.0"

from cbpromise.compiler.matcher import CallbackConvention, DEFAULT_CALLBACK_NAME, matches
from cbpromise.compiler.scope import NameAllocator
from cbpromise.compiler.template import ExpansionNames, expand
from cbpromise.compiler.promisifier import (
    Promisifier,
    PromisifyTransformer,
    promisify,
    promisify_function,
    transform_source,
)
from cbpromise.runtime.deferred import Deferred
from cbpromise.errors import (
    PromisifyError,
    MalformedFunctionError,
    ConventionMismatchError,
    RejectedError,
)
