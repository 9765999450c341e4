"""Runtime support imported by promisified code."""

from cbpromise.runtime.deferred import Deferred, pack_values

__all__ = ['Deferred', 'pack_values']
