from itertools import zip_longest
from typing import Callable

import numpy as np
from numpy.typing import ArrayLike, NDArray

from npflow._array import Array, implements, in_array, out_array
from npflow._grad import is_grad_enabled


def _np_reduce_to(x: NDArray, shape: tuple[int, ...]) -> NDArray:
    """
    Reduce an ndarray to the specified shape performing an 'add' operation
    (can be seen as a reverse broadcasting).

    Parameters
    ----------
    x : ndarray
        The array to reduce.
    shape : tuple of ints
        The target shape.

    Returns
    -------
    out : ndarray
        The reduced array.
    """
    if x.shape != shape:
        assert x.ndim >= len(shape)
        dims = zip_longest(reversed(x.shape), reversed(shape), fillvalue=1)
        axes = []
        for axis, (x_dim, target_dim) in enumerate(dims, start=1):
            if x_dim != target_dim:
                assert target_dim == 1
                axes.append(-axis)
        x = x.sum(tuple(axes))
        x = np.reshape(x, shape)  # since we may have removed some dims in the sum
    return x


def _np_operand(x: ArrayLike) -> ArrayLike:
    # python scalars are passed through untouched so that numpy keeps the
    # dtype of the array operand (e.g. float32 * 0.1 stays float32)
    return x.data if isinstance(x, Array) else x


def _dispatch_ufunc(
    np_ufunc: Callable[..., ArrayLike],
    backward_func: Callable[..., None],
    inputs: tuple[ArrayLike, ...],
    out: Array | tuple | None,  # numpy always wraps "out" in a tuple
) -> Array:
    arrays = tuple(in_array(x) for x in inputs)
    operands = tuple(_np_operand(x) for x in inputs)
    prevs = tuple(x for x in arrays if x.requires_grad) if is_grad_enabled() else None

    if out is not None:
        if not isinstance(out, Array):
            if not (len(out) == 1 and isinstance(out[0], Array)):
                raise TypeError(f"out= must be single Array")
            out = out[0]
        if prevs or out.requires_grad:
            raise RuntimeError("out= is not supported for arrays requiring grad")
        np_ufunc(*operands, out=out.data)
    else:
        out_data = np_ufunc(*operands)
        backward = (lambda x: backward_func(x, *arrays)) if prevs else None
        out = out_array(out_data, prevs, backward)

    return out


##### ufuncs #####


@implements(np.add)
def add(x1: ArrayLike, x2: ArrayLike, out: Array | None = None) -> Array:
    return _dispatch_ufunc(np.add, _add_backward, (x1, x2), out)


def _add_backward(out: Array, x1: Array, x2: Array) -> None:
    assert out.grad is not None
    if x1.requires_grad:
        assert x1.grad is not None
        x1.grad += _np_reduce_to(out.grad, x1.shape)
    if x2.requires_grad:
        assert x2.grad is not None
        x2.grad += _np_reduce_to(out.grad, x2.shape)


@implements(np.subtract)
def subtract(x1: ArrayLike, x2: ArrayLike, out: Array | None = None) -> Array:
    return _dispatch_ufunc(np.subtract, _subtract_backward, (x1, x2), out)


def _subtract_backward(out: Array, x1: Array, x2: Array) -> None:
    assert out.grad is not None
    if x1.requires_grad:
        assert x1.grad is not None
        x1.grad += _np_reduce_to(out.grad, x1.shape)
    if x2.requires_grad:
        assert x2.grad is not None
        x2.grad -= _np_reduce_to(out.grad, x2.shape)


@implements(np.multiply)
def multiply(x1: ArrayLike, x2: ArrayLike, out: Array | None = None) -> Array:
    return _dispatch_ufunc(np.multiply, _multiply_backward, (x1, x2), out)


def _multiply_backward(out: Array, x1: Array, x2: Array) -> None:
    assert out.grad is not None
    if x1.requires_grad:
        assert x1.grad is not None
        x1.grad += _np_reduce_to(out.grad * x2.data, x1.shape)
    if x2.requires_grad:
        assert x2.grad is not None
        x2.grad += _np_reduce_to(out.grad * x1.data, x2.shape)


@implements(np.divide)
def divide(x1: ArrayLike, x2: ArrayLike, out: Array | None = None) -> Array:
    return _dispatch_ufunc(np.divide, _divide_backward, (x1, x2), out)


def _divide_backward(out: Array, x1: Array, x2: Array) -> None:
    assert out.grad is not None
    if x1.requires_grad:
        assert x1.grad is not None
        x1.grad += _np_reduce_to(out.grad / x2.data, x1.shape)
    if x2.requires_grad:
        assert x2.grad is not None
        x2.grad -= _np_reduce_to(out.grad * out.data / x2.data, x2.shape)


@implements(np.matmul)
def matmul(x1: ArrayLike, x2: ArrayLike, out: Array | None = None) -> Array:
    return _dispatch_ufunc(np.matmul, _matmul_backward, (x1, x2), out)


def _matmul_backward(out: Array, x1: Array, x2: Array) -> None:
    assert out.grad is not None
    # promote 1-D operands to matrices: (n,) -> (1, n) on the left,
    # (n,) -> (n, 1) on the right
    a = x1.data if x1.ndim > 1 else x1.data[np.newaxis, :]
    b = x2.data if x2.ndim > 1 else x2.data[:, np.newaxis]
    batch = np.broadcast_shapes(a.shape[:-2], b.shape[:-2])
    out_grad = np.reshape(out.grad, (*batch, a.shape[-2], b.shape[-1]))
    if x1.requires_grad:
        assert x1.grad is not None
        a_grad = _np_reduce_to(out_grad @ np.swapaxes(b, -1, -2), a.shape)
        x1.grad += a_grad.reshape(x1.shape)
    if x2.requires_grad:
        assert x2.grad is not None
        b_grad = _np_reduce_to(np.swapaxes(a, -1, -2) @ out_grad, b.shape)
        x2.grad += b_grad.reshape(x2.shape)


@implements(np.power)
def power(x1: ArrayLike, x2: ArrayLike, out: Array | None = None) -> Array:
    return _dispatch_ufunc(np.power, _power_backward, (x1, x2), out)


def _power_backward(out: Array, x1: Array, x2: Array) -> None:
    assert out.grad is not None
    if x1.requires_grad:
        assert x1.grad is not None
        x1.grad += _np_reduce_to(
            out.grad * x2.data * x1.data ** (x2.data - 1), x1.shape
        )
    if x2.requires_grad:
        raise NotImplementedError


@implements(np.square)
def square(x: ArrayLike, out: Array | None = None) -> Array:
    return _dispatch_ufunc(np.square, _square_backward, (x,), out)


def _square_backward(out: Array, x: Array) -> None:
    assert out.grad is not None
    if x.requires_grad:
        assert x.grad is not None
        x.grad += 2 * x.data * out.grad


@implements(np.sqrt)
def sqrt(x: ArrayLike, out: Array | None = None) -> Array:
    return _dispatch_ufunc(np.sqrt, _sqrt_backward, (x,), out)


def _sqrt_backward(out: Array, x: Array) -> None:
    assert out.grad is not None
    if x.requires_grad:
        assert x.grad is not None
        x.grad += out.grad / (2 * out.data)


@implements(np.negative)
def negative(x: ArrayLike, out: Array | None = None) -> Array:
    return multiply(x, -1, out)


@implements(np.exp)
def exp(x: ArrayLike, out: Array | None = None) -> Array:
    return _dispatch_ufunc(np.exp, _exp_backward, (x,), out)


def _exp_backward(out: Array, x: Array) -> None:
    assert out.grad is not None
    if x.requires_grad:
        assert x.grad is not None
        x.grad += out.grad * out.data


@implements(np.log)
def log(x: ArrayLike, out: Array | None = None) -> Array:
    return _dispatch_ufunc(np.log, _log_backward, (x,), out)


def _log_backward(out: Array, x: Array) -> None:
    assert out.grad is not None
    if x.requires_grad:
        assert x.grad is not None
        x.grad += out.grad / x.data


@implements(np.tanh)
def tanh(x: ArrayLike, out: Array | None = None) -> Array:
    return _dispatch_ufunc(np.tanh, _tanh_backward, (x,), out)


def _tanh_backward(out: Array, x: Array) -> None:
    assert out.grad is not None
    if x.requires_grad:
        assert x.grad is not None
        x.grad += out.grad * (1 - out.data**2)
