from __future__ import annotations

__all__ = ["CostReduction", "FeedEntry", "Session", "TensorArrayMap"]

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Sequence, Union

from npflow._array import Array, asarray
from npflow._engine import tidy
from npflow._errors import DisposedError, InputProviderExhaustedError
from npflow._grad import is_grad_enabled, no_grad
from npflow._variable import Variable
from npflow.graph._graph import ConstantNode, Graph, Node, OpNode, PlaceholderNode, VariableNode
from npflow.graph.input_provider import InputProvider
from npflow.optim import Optimizer

logger = logging.getLogger(__name__)


class CostReduction(Enum):
    NONE = "none"
    SUM = "sum"
    MEAN = "mean"


@dataclass(frozen=True)
class FeedEntry:
    """Binds a placeholder to a fixed array or to an input provider."""

    node: PlaceholderNode
    data: Union[Array, InputProvider]


class TensorArrayMap:
    """Map from graph nodes to arrays, keyed by node id."""

    def __init__(self) -> None:
        self._arrays: dict[int, Array] = {}

    def set(self, node: Node, x: Array) -> None:
        self._arrays[node.id] = x

    def get(self, node: Node) -> Array:
        try:
            return self._arrays[node.id]
        except KeyError:
            raise KeyError(f"{node!r} is not in the array map") from None

    def has(self, node: Node) -> bool:
        return node.id in self._arrays

    def __len__(self) -> int:
        return len(self._arrays)

    def clear(self) -> None:
        self._arrays.clear()


def _topological_order(targets: Sequence[Node]) -> list[Node]:
    order: list[Node] = []
    visited: set[int] = set()

    def visit(n: Node) -> None:
        if n.id not in visited:
            visited.add(n.id)
            for x in n.inputs:
                visit(x)
            order.append(n)

    for target in targets:
        visit(target)
    return order


class Session:
    """
    Evaluates and trains a `Graph`.

    The current values of the graph variables used by the session are kept
    in `activation_array_map`, so that they can be inspected after training.
    """

    def __init__(self, graph: Graph) -> None:
        self.graph = graph
        self.activation_array_map = TensorArrayMap()
        self._disposed = False

    def _check_not_disposed(self) -> None:
        if self._disposed:
            raise DisposedError("session has been disposed")

    ##### evaluation #####

    def eval(self, node: Node, feed_entries: Sequence[FeedEntry] = ()) -> Array:
        """Evaluate a single node. The caller owns the returned array."""
        return self.eval_all([node], feed_entries)[0]

    def eval_all(
        self, nodes: Sequence[Node], feed_entries: Sequence[FeedEntry] = ()
    ) -> list[Array]:
        """
        Evaluate several nodes with the same feeds. The caller owns the
        returned arrays.
        """
        self._check_not_disposed()
        order = _topological_order(nodes)
        self._track_variables(order)

        def run() -> list[Array]:
            feeds, copies = self._load_feeds(feed_entries)
            try:
                with no_grad():
                    values = self._forward(order, feeds)
                    return [Array(values[n.id].data_sync()) for n in nodes]
            finally:
                _dispose_copies(copies)

        return tidy(run)

    ##### training #####

    def train(
        self,
        target: Node,
        feed_entries: Sequence[FeedEntry],
        batch_size: int,
        optimizer: Optimizer,
        cost_reduction: CostReduction = CostReduction.NONE,
    ) -> Array | None:
        """
        Train the variables `target` depends on for one batch.

        For every example of the batch, the next copy is taken from each input
        provider, the target is evaluated and differentiated with respect to
        the graph variables, and the optimizer updates the variables with the
        gradients of that example.

        Parameters
        ----------
        target : Node
            The node to minimize.
        feed_entries : sequence of FeedEntry
            Values for the placeholders `target` depends on.
        batch_size : int
            Number of examples in the batch.
        optimizer : Optimizer
            The optimizer updating the variables.
        cost_reduction : CostReduction, optional
            NONE (default) returns None, SUM returns the sum of the target
            values over the batch and MEAN their average.

        Returns
        -------
        cost : array or None
            The reduced cost, owned by the caller, or None.
        """
        self._check_not_disposed()
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {batch_size}")
        if not is_grad_enabled():
            raise RuntimeError("cannot train a graph while grad is disabled")

        order = _topological_order([target])
        variables = {
            v.name: v for v in self._track_variables(order) if v.trainable
        }
        logger.debug(
            "training %r on %d examples, %d variables", target, batch_size, len(variables)
        )

        def run() -> Array | None:
            optimizer.before_batch(variables)
            total = None
            for _ in range(batch_size):
                cost = tidy(
                    lambda: self._train_example(order, target, feed_entries, variables, optimizer)
                )
                if cost_reduction is not CostReduction.NONE:
                    with no_grad():
                        total = cost if total is None else total + cost
            optimizer.after_batch(variables)
            if total is None:
                return None
            if cost_reduction is CostReduction.MEAN:
                with no_grad():
                    total = total / batch_size
            return total

        return tidy(run)

    def _train_example(
        self,
        order: list[Node],
        target: Node,
        feed_entries: Sequence[FeedEntry],
        variables: dict[str, Variable],
        optimizer: Optimizer,
    ) -> Array:
        feeds, copies = self._load_feeds(feed_entries)
        try:
            values = self._forward(order, feeds)
            y = values[target.id]
            if not y.requires_grad:
                raise ValueError(f"{target!r} does not depend on any trainable variable")
            for v in variables.values():
                v.grad = None
            y.backward()
            grads = {}
            for name, v in variables.items():
                if v.grad is not None:
                    grads[name] = Array(v.grad)
                    v.grad = None
            optimizer.after_example(variables, grads)
            return y.detach()
        finally:
            _dispose_copies(copies)

    #####

    def _track_variables(self, order: list[Node]) -> list[Variable]:
        found = []
        for node in order:
            if isinstance(node, VariableNode):
                if not self.activation_array_map.has(node):
                    self.activation_array_map.set(node, node.data)
                found.append(node.data)
        return found

    def _load_feeds(
        self, feed_entries: Sequence[FeedEntry]
    ) -> tuple[dict[int, Array], list[tuple[InputProvider, Any]]]:
        feeds: dict[int, Array] = {}
        copies: list[tuple[InputProvider, Any]] = []
        try:
            for entry in feed_entries:
                if isinstance(entry.data, Array):
                    x = entry.data
                else:
                    copy = entry.data.get_next_copy()
                    if copy is None:
                        raise InputProviderExhaustedError(
                            f"no input left for {entry.node!r}"
                        )
                    # the provider gets back exactly what it handed out
                    copies.append((entry.data, copy))
                    x = asarray(copy)
                expected = entry.node.shape
                if expected is not None and x.shape != expected:
                    raise ValueError(
                        f"fed value for {entry.node!r} has shape {x.shape}, expected {expected}"
                    )
                feeds[entry.node.id] = x
        except Exception:
            _dispose_copies(copies)
            raise
        return feeds, copies

    def _forward(self, order: list[Node], feeds: dict[int, Array]) -> dict[int, Array]:
        values: dict[int, Array] = {}
        for node in order:
            if isinstance(node, PlaceholderNode):
                if node.id not in feeds:
                    raise ValueError(f"no value fed for {node!r}")
                values[node.id] = feeds[node.id]
            elif isinstance(node, (VariableNode, ConstantNode)):
                values[node.id] = node.data
            elif isinstance(node, OpNode):
                values[node.id] = node.op(*(values[x.id] for x in node.inputs))
            else:
                raise TypeError(f"cannot evaluate {node!r}")
        return values

    def dispose(self) -> None:
        """
        Forget the variables tracked by the session. Their values belong to
        the graph and are disposed with `Graph.dispose`; every other array a
        session creates is released when the call that created it returns.
        """
        if self._disposed:
            return
        self.activation_array_map.clear()
        self._disposed = True


def _dispose_copies(copies: list[tuple[InputProvider, Any]]) -> None:
    for provider, x in copies:
        provider.dispose_copy(x)
