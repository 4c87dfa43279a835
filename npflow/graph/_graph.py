from __future__ import annotations

__all__ = [
    "Graph",
    "Node",
    "PlaceholderNode",
    "VariableNode",
    "ConstantNode",
    "OpNode",
]

import math
from itertools import count
from typing import Callable, Sequence

import numpy as np
from numpy.typing import ArrayLike

from npflow._array import Array, _default_float, array
from npflow._engine import keep
from npflow._functions import mean, reshape, sum
from npflow._ufuncs import add, divide, exp, log, matmul, multiply, square, subtract, tanh
from npflow._variable import Variable

_node_ids = count()


class Node:
    def __init__(
        self,
        graph: Graph,
        name: str,
        shape: tuple[int, ...] | None,
        inputs: Sequence[Node] = (),
    ) -> None:
        self.id = next(_node_ids)
        self.graph = graph
        self.name = name
        self.shape = shape
        self.inputs = tuple(inputs)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, id={self.id}, shape={self.shape})"


class PlaceholderNode(Node):
    pass


class VariableNode(Node):
    def __init__(self, graph: Graph, name: str, data: Variable) -> None:
        super().__init__(graph, name, data.shape)
        self.data = data


class ConstantNode(Node):
    def __init__(self, graph: Graph, name: str, data: Array) -> None:
        super().__init__(graph, name, data.shape)
        self.data = data


class OpNode(Node):
    def __init__(
        self,
        graph: Graph,
        name: str,
        shape: tuple[int, ...],
        inputs: Sequence[Node],
        op: Callable[..., Array],
    ) -> None:
        super().__init__(graph, name, shape, inputs)
        self.op = op


def _broadcast_shape(op: str, x1: Node, x2: Node) -> tuple[int, ...]:
    try:
        return np.broadcast_shapes(x1.shape, x2.shape)
    except ValueError:
        raise ValueError(
            f"{op}: cannot broadcast shapes {x1.shape} and {x2.shape}"
        ) from None


def _matmul_shape(a: tuple[int, ...], b: tuple[int, ...]) -> tuple[int, ...]:
    if not a or not b:
        raise ValueError("matmul: operands must be at least 1-D")
    a2 = a if len(a) > 1 else (1, a[0])
    b2 = b if len(b) > 1 else (b[0], 1)
    if a2[-1] != b2[-2]:
        raise ValueError(f"matmul: inner dimensions of {a} and {b} do not match")
    shape = [*np.broadcast_shapes(a2[:-2], b2[:-2]), a2[-2], b2[-1]]
    if len(b) == 1:
        del shape[-1]
    if len(a) == 1:
        del shape[-2 if len(b) > 1 else -1]
    return tuple(shape)


def _reshape_shape(shape: tuple[int, ...], newshape: Sequence[int]) -> tuple[int, ...]:
    size = math.prod(shape)
    newshape = list(newshape)
    if newshape.count(-1) > 1:
        raise ValueError("reshape: can only specify one unknown dimension")
    if -1 in newshape:
        known = math.prod(d for d in newshape if d != -1)
        if known == 0 or size % known:
            raise ValueError(f"reshape: cannot reshape {shape} into {tuple(newshape)}")
        newshape[newshape.index(-1)] = size // known
    if math.prod(newshape) != size:
        raise ValueError(f"reshape: cannot reshape {shape} into {tuple(newshape)}")
    return tuple(newshape)


class Graph:
    """
    A symbolic computation graph.

    Builder methods create nodes and infer their shapes. A graph is evaluated
    and trained through a `Session`; nodes are only handles and hold no values
    besides the data of variables and constants.
    """

    def __init__(self) -> None:
        self.nodes: list[Node] = []

    def _add(self, node: Node) -> Node:
        for x in node.inputs:
            if x.graph is not self:
                raise ValueError(f"{x!r} belongs to a different graph")
        self.nodes.append(node)
        return node

    def placeholder(self, name: str, shape: Sequence[int] | None = None) -> PlaceholderNode:
        """
        Create a node whose value is fed at evaluation time. With a shape,
        fed values must match it.
        """
        return self._add(
            PlaceholderNode(self, name, tuple(shape) if shape is not None else None)
        )  # type: ignore

    def variable(self, name: str, data: ArrayLike) -> VariableNode:
        """
        Create a trainable variable node. If `data` is an Array, the node
        takes over its contents and the Array is disposed.
        """
        if isinstance(data, Array):
            values = data.data
            data.dispose()
        else:
            values = _default_float(np.array(data), None)
        return self._add(
            VariableNode(self, name, Variable(values, name=f"{name}_{next(_node_ids)}"))
        )  # type: ignore

    def constant(self, value: ArrayLike, name: str = "constant") -> ConstantNode:
        data = keep(value if isinstance(value, Array) else array(value))
        return self._add(ConstantNode(self, name, data))  # type: ignore

    ##### ops #####

    def _binary(self, name: str, op: Callable[..., Array], x1: Node, x2: Node) -> OpNode:
        self._check_known(name, x1, x2)
        shape = _broadcast_shape(name, x1, x2)
        return self._add(OpNode(self, name, shape, (x1, x2), op))  # type: ignore

    def _unary(self, name: str, op: Callable[..., Array], x: Node) -> OpNode:
        return self._add(OpNode(self, name, x.shape, (x,), op))  # type: ignore

    @staticmethod
    def _check_known(op: str, *nodes: Node) -> None:
        for x in nodes:
            if x.shape is None:
                raise ValueError(f"{op}: shape of {x!r} is unknown")

    def add(self, x1: Node, x2: Node) -> OpNode:
        return self._binary("add", add, x1, x2)

    def subtract(self, x1: Node, x2: Node) -> OpNode:
        return self._binary("subtract", subtract, x1, x2)

    def multiply(self, x1: Node, x2: Node) -> OpNode:
        return self._binary("multiply", multiply, x1, x2)

    def divide(self, x1: Node, x2: Node) -> OpNode:
        return self._binary("divide", divide, x1, x2)

    def matmul(self, x1: Node, x2: Node) -> OpNode:
        self._check_known("matmul", x1, x2)
        shape = _matmul_shape(x1.shape, x2.shape)  # type: ignore
        return self._add(OpNode(self, "matmul", shape, (x1, x2), matmul))  # type: ignore

    def reduce_sum(self, x: Node) -> OpNode:
        return self._add(OpNode(self, "reduce_sum", (), (x,), sum))  # type: ignore

    def square(self, x: Node) -> OpNode:
        return self._unary("square", square, x)

    def exp(self, x: Node) -> OpNode:
        return self._unary("exp", exp, x)

    def log(self, x: Node) -> OpNode:
        return self._unary("log", log, x)

    def tanh(self, x: Node) -> OpNode:
        return self._unary("tanh", tanh, x)

    def reshape(self, x: Node, shape: Sequence[int]) -> OpNode:
        self._check_known("reshape", x)
        newshape = _reshape_shape(x.shape, shape)  # type: ignore
        op = lambda a: reshape(a, newshape)
        return self._add(OpNode(self, "reshape", newshape, (x,), op))  # type: ignore

    def mean_squared_cost(self, label: Node, prediction: Node) -> OpNode:
        """Mean of the squared element-wise differences, as a scalar."""
        self._check_known("mean_squared_cost", label, prediction)
        if label.shape != prediction.shape:
            raise ValueError(
                f"mean_squared_cost: label shape {label.shape} does not match "
                f"prediction shape {prediction.shape}"
            )
        op = lambda y, y_hat: mean(square(subtract(y, y_hat)))
        return self._add(
            OpNode(self, "mean_squared_cost", (), (label, prediction), op)
        )  # type: ignore

    #####

    def dispose(self) -> None:
        """Dispose the data held by variable and constant nodes."""
        for node in self.nodes:
            if isinstance(node, (VariableNode, ConstantNode)):
                node.data.dispose()
