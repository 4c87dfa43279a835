from __future__ import annotations

__all__ = ["Variable", "variable"]

from itertools import count

import numpy as np
from numpy.typing import ArrayLike, DTypeLike

from npflow._array import Array, _default_float
from npflow._engine import get_tracker
from npflow._errors import ShapeMismatchError

_names = count()


class Variable(Array):
    """
    A named, mutable array used as an optimization parameter.

    Variables are never disposed by a `tidy` scope; they live until
    `dispose()` is called on them. Use `assign` to change their contents,
    which keeps the underlying buffer.
    """

    def __init__(
        self,
        data: ArrayLike,
        name: str | None = None,
        trainable: bool = True,
        dtype: DTypeLike = None,
    ) -> None:
        super().__init__(data, dtype)
        self._kept = True
        self._name = name if name is not None else f"variable_{next(_names)}"
        self._trainable = trainable
        # set requires_grad even if grad is globally disabled
        self.requires_grad = trainable

    @property
    def name(self) -> str:
        return self._name

    @property
    def trainable(self) -> bool:
        return self._trainable

    def assign(self, value: ArrayLike) -> None:
        """
        Overwrite the variable contents with `value`, which must have the same
        shape. The value is cast to the variable dtype.
        """
        new_data = value.data if isinstance(value, Array) else np.asarray(value)
        if new_data.shape != self.shape:
            raise ShapeMismatchError(
                f"value assigned to variable {self.name!r}", self.shape, new_data.shape
            )
        np.copyto(self.data, new_data, casting="unsafe")

    def dispose(self) -> None:
        if not self.is_disposed:
            self._tracker.unregister_variable(self)
        super().dispose()

    def __repr__(self) -> str:
        if self.is_disposed:
            return f"Variable({self.name!r}, <disposed>)"
        return repr(self.data).replace("array", "Variable")


def variable(
    initial_value: ArrayLike,
    trainable: bool = True,
    name: str | None = None,
    dtype: DTypeLike = None,
) -> Variable:
    """
    Create a variable and register it, so that optimizers minimizing a loss
    without an explicit variable list update it.

    Parameters
    ----------
    initial_value : array_like
        The initial contents. If it is an Array, the variable takes over its
        contents and the Array itself is disposed.
    trainable : bool, optional
        Whether gradients are computed for this variable (default True).
    name : str, optional
        Unique variable name. Generated if omitted.
    dtype : dtype, optional
        The dtype of the variable. Integer and boolean data default to float32.

    Returns
    -------
    out : Variable
        The new variable.

    Raises
    ------
    ValueError
        If a variable with the same name is already registered.
    """
    tracker = get_tracker()
    if name is not None and name in tracker.registered_variables:
        raise ValueError(f"variable with name {name!r} was already registered")
    if isinstance(initial_value, Array):
        data = initial_value.data
        if dtype is not None:
            data = data.astype(dtype)
        initial_value.dispose()
    else:
        data = _default_float(np.array(initial_value, dtype=dtype), dtype)
    v = Variable(data, name=name, trainable=trainable)
    tracker.register_variable(v)
    return v
