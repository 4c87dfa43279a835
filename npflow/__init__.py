__all__ = [
    "graph",
    "optim",
    "train",
    "typing",
    #
    "Array",
    "array",
    "asarray",
    "scalar",
    "full",
    "full_like",
    "zeros",
    "zeros_like",
    "ones",
    "reshape",
    "transpose",
    "sum",
    "mean",
    "add",
    "divide",
    "exp",
    "log",
    "matmul",
    "multiply",
    "negative",
    "power",
    "sqrt",
    "square",
    "subtract",
    "tanh",
    "Variable",
    "variable",
    "value_and_grads",
    "is_grad_enabled",
    "no_grad",
    "set_grad_enabled",
    "TensorTracker",
    "get_tracker",
    "num_tensors",
    "memory",
    "tidy",
    "scope",
    "keep",
    "dispose",
    "reset",
    "DisposedError",
    "InputProviderExhaustedError",
    "ShapeMismatchError",
]

from . import graph, optim, train, typing
from ._array import Array, array, asarray, full, full_like, ones, scalar, zeros, zeros_like
from ._autodiff import value_and_grads
from ._engine import (TensorTracker, dispose, get_tracker, keep, memory,
                      num_tensors, reset, scope, tidy)
from ._errors import DisposedError, InputProviderExhaustedError, ShapeMismatchError
from ._functions import mean, reshape, sum, transpose
from ._grad import is_grad_enabled, no_grad, set_grad_enabled
from ._ufuncs import (add, divide, exp, log, matmul, multiply, negative, power,
                      sqrt, square, subtract, tanh)
from ._variable import Variable, variable
