"""
Tensor lifecycle tracking.

Every `Array` registers itself with the active `TensorTracker` when it is
created and unregisters when it is disposed, so the number of live arrays can
be queried at any time. `tidy` opens a scope: arrays created inside it are
disposed when the scope ends, except for the ones returned by the scope
(which are handed to the enclosing scope) and the ones marked with `keep`.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from itertools import count
from typing import TYPE_CHECKING, Any, Callable, Iterator, TypeVar

if TYPE_CHECKING:
    from npflow._array import Array
    from npflow._variable import Variable

__all__ = [
    "TensorTracker",
    "get_tracker",
    "num_tensors",
    "memory",
    "tidy",
    "scope",
    "keep",
    "dispose",
    "reset",
]

logger = logging.getLogger(__name__)

_T = TypeVar("_T")


def _collect_arrays(container: Any) -> list[Array]:
    """
    Walk (possibly nested) lists, tuples and dict values and return the
    arrays found in them.
    """
    from npflow._array import Array

    found: list[Array] = []

    def walk(x: Any) -> None:
        if isinstance(x, Array):
            found.append(x)
        elif isinstance(x, (list, tuple)):
            for item in x:
                walk(item)
        elif isinstance(x, dict):
            for item in x.values():
                walk(item)

    walk(container)
    return found


class TensorTracker:
    def __init__(self) -> None:
        self._handles = count()
        self._live: dict[int, Array] = {}
        self._scopes: list[list[Array]] = []
        self._variables: dict[str, Variable] = {}

    ##### arrays #####

    def register(self, x: Array) -> int:
        handle = next(self._handles)
        self._live[handle] = x
        if self._scopes:
            self._scopes[-1].append(x)
        return handle

    def release(self, x: Array) -> None:
        self._live.pop(x.handle, None)

    @property
    def num_tensors(self) -> int:
        return len(self._live)

    def memory(self) -> dict[str, int]:
        return {
            "num_tensors": len(self._live),
            "num_bytes": sum(x.nbytes for x in self._live.values()),
        }

    ##### scopes #####

    @property
    def scope_depth(self) -> int:
        return len(self._scopes)

    def start_scope(self) -> None:
        self._scopes.append([])

    def end_scope(self, result: Any = None) -> None:
        tracked = self._scopes.pop()
        promoted = {x.handle for x in _collect_arrays(result)}
        n_disposed = 0
        for x in tracked:
            if x.is_disposed:
                continue
            if x.handle in promoted:
                # hand the result over to the enclosing scope, if any
                if self._scopes:
                    self._scopes[-1].append(x)
            elif not x.is_kept:
                x.dispose()
                n_disposed += 1
        logger.debug(
            "scope closed at depth %d: %d arrays disposed, %d promoted",
            len(self._scopes),
            n_disposed,
            len(promoted),
        )

    ##### variables #####

    def register_variable(self, v: Variable) -> None:
        if v.name in self._variables:
            raise ValueError(f"variable with name {v.name!r} was already registered")
        self._variables[v.name] = v
        logger.debug("registered variable %r with shape %s", v.name, v.shape)

    def unregister_variable(self, v: Variable) -> None:
        if self._variables.get(v.name) is v:
            del self._variables[v.name]

    @property
    def registered_variables(self) -> dict[str, Variable]:
        return dict(self._variables)


_tracker = TensorTracker()


def get_tracker() -> TensorTracker:
    return _tracker


def reset() -> None:
    """
    Replace the global tracker with a fresh one. Arrays created before the
    reset are forgotten, not disposed.
    """
    global _tracker
    _tracker = TensorTracker()


def num_tensors() -> int:
    """Return the number of arrays that are currently live."""
    return _tracker.num_tensors


def memory() -> dict[str, int]:
    return _tracker.memory()


@contextmanager
def scope() -> Iterator[None]:
    """
    Context manager version of `tidy`. Nothing is returned from the block, so
    every array created inside it is disposed unless it was kept.
    """
    tracker = _tracker
    tracker.start_scope()
    try:
        yield
    finally:
        tracker.end_scope()


def tidy(fn: Callable[[], _T]) -> _T:
    """
    Run `fn` and dispose every array it created, except the arrays contained
    in its return value and the ones marked with `keep`.

    Parameters
    ----------
    fn : callable
        Zero-argument function. Its result may be an array, or a (nested)
        list/tuple/dict of arrays.

    Returns
    -------
    out : object
        Whatever `fn` returned.
    """
    tracker = _tracker
    tracker.start_scope()
    result = None
    try:
        result = fn()
        return result
    finally:
        tracker.end_scope(result)


def keep(x: _T) -> _T:
    """Mark an array so that no enclosing scope disposes it."""
    for arr in _collect_arrays(x):
        arr._kept = True
    return x


def dispose(container: Any) -> None:
    """Dispose every array found in a (nested) container."""
    for x in _collect_arrays(container):
        x.dispose()
