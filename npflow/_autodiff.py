from __future__ import annotations

__all__ = ["value_and_grads"]

from typing import Callable, Iterable

from npflow._array import Array
from npflow._engine import get_tracker
from npflow._grad import is_grad_enabled
from npflow._variable import Variable


def _trainable_variables(var_list: Iterable[Variable] | None) -> list[Variable]:
    if var_list is None:
        return [v for v in get_tracker().registered_variables.values() if v.trainable]
    var_list = list(var_list)
    for v in var_list:
        if not isinstance(v, Variable):
            raise TypeError(f"expected a Variable, got {type(v).__name__}")
    return var_list


def value_and_grads(
    f: Callable[[], Array], var_list: Iterable[Variable] | None = None
) -> tuple[Array, dict[str, Array]]:
    """
    Evaluate a scalar function and compute its gradients with respect to
    variables.

    Parameters
    ----------
    f : callable
        Zero-argument function returning a scalar array computed from
        variables.
    var_list : iterable of Variable, optional
        Variables to differentiate with respect to. Defaults to every
        registered trainable variable.

    Returns
    -------
    value : array
        The detached value of `f()`.
    grads : dict
        Mapping from variable name to gradient array. Variables the result
        does not depend on are left out.

    Raises
    ------
    ValueError
        If `f` does not return a scalar or none of the variables contributes
        to it.
    """
    if not is_grad_enabled():
        raise RuntimeError("cannot compute gradients while grad is disabled")
    variables = _trainable_variables(var_list)
    for v in variables:
        v.grad = None

    y = f()
    if not isinstance(y, Array) or y.ndim != 0:
        raise ValueError("the function passed to value_and_grads() must return a scalar")
    if not y.requires_grad:
        raise ValueError(
            "cannot find a connection between any variable and the result of the loss function"
        )

    y.backward()
    grads = {}
    try:
        for v in variables:
            if v.grad is not None:
                grads[v.name] = Array(v.grad)
    finally:
        for v in variables:
            v.grad = None
    if not grads:
        raise ValueError(
            "cannot find a connection between any variable and the result of the loss function"
        )
    return y.detach(), grads
