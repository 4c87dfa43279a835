from typing import Callable, TypeVar

import numpy as np
from numpy.typing import ArrayLike, NDArray

from npflow._array import Array, implements, in_array
from npflow.typing import ShapeLike

_ShapeLike = TypeVar("_ShapeLike", bound=ShapeLike | None)


def _copy_if_list(x: _ShapeLike) -> _ShapeLike:
    return x.copy() if isinstance(x, list) else x


def _np_expand_dims(x: NDArray, axis: ShapeLike | None) -> NDArray:
    return x if axis is None else np.expand_dims(x, axis)


##### functions #####


@implements(np.reshape)
def reshape(x: ArrayLike, newshape: ShapeLike) -> Array:
    x = in_array(x)
    if x.requires_grad:
        prevs = (x,)
        backward = lambda out: _reshape_backward(out, x)
    else:
        prevs = backward = None
    return Array(
        np.reshape(x.data, newshape),
        requires_grad=x.requires_grad,
        _prevs=prevs,
        _backward=backward,
    )


def _reshape_backward(out: Array, x: Array) -> None:
    assert out.grad is not None
    if x.requires_grad:
        assert x.grad is not None
        x.grad += out.grad.reshape(x.shape)


#####


@implements(np.transpose)
def transpose(x: ArrayLike, axes: ShapeLike | None = None) -> Array:
    x = in_array(x)
    if x.requires_grad:
        prevs = (x,)
        axes = _copy_if_list(axes)
        backward = lambda out: _transpose_backward(out, x, axes)
    else:
        prevs = backward = None
    return Array(
        np.transpose(x.data, axes),
        requires_grad=x.requires_grad,
        _prevs=prevs,
        _backward=backward,
    )


def _transpose_backward(out: Array, x: Array, axes: ShapeLike | None) -> None:
    assert out.grad is not None
    if x.requires_grad:
        assert x.grad is not None
        if isinstance(axes, (tuple, list)):
            axes_t = [0] * len(axes)
            for i, axis in enumerate(axes):
                axes_t[axis] = i
        else:
            axes_t = axes
        x.grad += np.transpose(out.grad, axes_t)


#####


@implements(np.sum)
def sum(x: ArrayLike, axis: ShapeLike | None = None, keepdims: bool = False) -> Array:
    return _sum_mean(np.sum, x, axis, keepdims)


@implements(np.mean)
def mean(x: ArrayLike, axis: ShapeLike | None = None, keepdims: bool = False) -> Array:
    return _sum_mean(np.mean, x, axis, keepdims)


def _sum_mean(
    np_func: Callable[..., ArrayLike],
    x: ArrayLike,
    axis: ShapeLike | None,
    keepdims: bool,
) -> Array:
    assert np_func in (np.sum, np.mean)
    x = in_array(x)
    if x.requires_grad:
        prevs = (x,)
        axis_to_expand = None if keepdims else _copy_if_list(axis)
        is_mean = np_func is np.mean
        backward = lambda out: _sum_mean_backward(out, x, axis_to_expand, is_mean)
    else:
        prevs = backward = None
    return Array(
        np_func(x.data, axis=axis, keepdims=keepdims),
        requires_grad=x.requires_grad,
        _prevs=prevs,
        _backward=backward,
    )


def _sum_mean_backward(
    out: Array, x: Array, axis: ShapeLike | None, is_mean: bool
) -> None:
    assert out.grad is not None
    if x.requires_grad:
        assert x.grad is not None
        out_grad = _np_expand_dims(out.grad, axis)
        if is_mean:
            out_grad = out_grad / (x.size / out.size)
        x.grad += out_grad
