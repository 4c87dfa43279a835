"""
Optimizers.

An optimizer is used in two ways:

- eagerly, through `minimize(f)`, which evaluates a loss function,
  differentiates it with respect to the registered variables and updates
  them in place;
- by a graph `Session`, which calls `before_batch`, then `after_example` once
  per example with the gradients of that example, then `after_batch`.

Both paths end in `_apply_gradient`, the per-variable update rule that each
subclass implements. Optimizer state lives in arrays that are kept out of
`tidy` scopes and released by `dispose()`.
"""

from __future__ import annotations

__all__ = ["Optimizer", "SGDOptimizer", "AdagradOptimizer", "DEFAULT_EPSILON"]

import logging
from typing import Callable, Iterable, Mapping

from npflow._array import Array, full_like
from npflow._autodiff import value_and_grads
from npflow._engine import get_tracker, keep, scope, tidy
from npflow._errors import DisposedError, ShapeMismatchError
from npflow._grad import no_grad
from npflow._ufuncs import sqrt
from npflow._variable import Variable

logger = logging.getLogger(__name__)

DEFAULT_EPSILON = 1e-8


class Optimizer:
    def __init__(self, learning_rate: float) -> None:
        if learning_rate <= 0:
            raise ValueError(f"learning_rate must be > 0, got {learning_rate}")
        self.learning_rate = float(learning_rate)
        self._disposed = False

    @property
    def is_disposed(self) -> bool:
        return self._disposed

    def _check_not_disposed(self) -> None:
        if self._disposed:
            raise DisposedError(f"{type(self).__name__} has been disposed")

    ##### eager api #####

    def minimize(
        self,
        f: Callable[[], Array],
        return_cost: bool = False,
        var_list: Iterable[Variable] | None = None,
    ) -> Array | None:
        """
        Run one optimization step on the loss returned by `f`.

        Parameters
        ----------
        f : callable
            Zero-argument function returning a scalar loss computed from
            variables.
        return_cost : bool, optional
            Whether to return the loss value (default False).
        var_list : iterable of Variable, optional
            Variables to update. Defaults to every registered trainable
            variable.

        Returns
        -------
        cost : array or None
            The loss value if `return_cost` is True, otherwise None. The
            caller owns the returned array and must dispose it.
        """
        self._check_not_disposed()
        cost, grads = self.compute_gradients(f, var_list)
        try:
            self.apply_gradients(grads)
        except Exception:
            cost.dispose()
            raise
        finally:
            for g in grads.values():
                g.dispose()
        if return_cost:
            return cost
        cost.dispose()
        return None

    def compute_gradients(
        self, f: Callable[[], Array], var_list: Iterable[Variable] | None = None
    ) -> tuple[Array, dict[str, Array]]:
        """
        Evaluate `f` and return its value together with the gradients with
        respect to the variables, keyed by variable name. Every other array
        created while evaluating `f` is disposed.
        """
        self._check_not_disposed()
        return tidy(lambda: value_and_grads(f, var_list))

    def apply_gradients(self, grads: Mapping[str, Array]) -> None:
        """
        Update registered variables with the given gradients, keyed by
        variable name.
        """
        self._check_not_disposed()
        variables = get_tracker().registered_variables
        for name, grad in grads.items():
            if name not in variables:
                raise ValueError(f"no registered variable named {name!r}")
            self._apply_gradient(variables[name], grad)

    ##### graph api #####

    def before_batch(self, variables: Mapping[str, Variable]) -> None:
        self._check_not_disposed()

    def after_example(
        self, variables: Mapping[str, Variable], grads: Mapping[str, Array]
    ) -> None:
        self._check_not_disposed()
        for name, grad in grads.items():
            self._apply_gradient(variables[name], grad, graph_mode=True)

    def after_batch(self, variables: Mapping[str, Variable]) -> None:
        self._check_not_disposed()

    #####

    def _apply_gradient(
        self, var: Variable, grad: Array, graph_mode: bool = False
    ) -> None:
        raise NotImplementedError

    def dispose(self) -> None:
        self._disposed = True


class SGDOptimizer(Optimizer):
    """Plain gradient descent: ``v := v - learning_rate * g``."""

    def _apply_gradient(
        self, var: Variable, grad: Array, graph_mode: bool = False
    ) -> None:
        _check_shape(var, grad, "gradient")
        with no_grad(), scope():
            var.assign(var - self.learning_rate * grad)


class AdagradOptimizer(Optimizer):
    """
    Adagrad optimizer.

    Each variable gets an accumulator of squared gradients, created on first
    use. For a gradient ``g``::

        acc <- acc + g * g
        v   <- v - learning_rate * g / sqrt(acc + epsilon)

    Parameters
    ----------
    learning_rate : float
        Step size. Must be positive.
    initial_accumulator_value : float, optional
        Starting value of the eager accumulators (default 0.1). Accumulators
        created by a graph session start at zero.
    epsilon : float, optional
        Added to the accumulator before the square root (default 1e-8).
    """

    def __init__(
        self,
        learning_rate: float,
        initial_accumulator_value: float = 0.1,
        epsilon: float = DEFAULT_EPSILON,
    ) -> None:
        super().__init__(learning_rate)
        if initial_accumulator_value < 0:
            raise ValueError(
                f"initial_accumulator_value must be >= 0, got {initial_accumulator_value}"
            )
        if epsilon <= 0:
            raise ValueError(f"epsilon must be > 0, got {epsilon}")
        self.initial_accumulator_value = float(initial_accumulator_value)
        self.epsilon = float(epsilon)
        # variable handle -> (variable, accumulated squared gradients)
        self._accumulators: dict[int, tuple[Variable, Array]] = {}

    @property
    def accumulators(self) -> dict[str, Array]:
        """Accumulators of the live variables, by variable name."""
        return {
            var.name: acc
            for var, acc in self._accumulators.values()
            if not var.is_disposed
        }

    def _drop_stale_accumulators(self) -> None:
        # a disposed variable never gets gradients again
        for handle, (var, acc) in list(self._accumulators.items()):
            if var.is_disposed:
                acc.dispose()
                del self._accumulators[handle]
                logger.debug("dropped accumulator of disposed variable %r", var.name)

    def _apply_gradient(
        self, var: Variable, grad: Array, graph_mode: bool = False
    ) -> None:
        self._check_not_disposed()
        _check_shape(var, grad, "gradient")
        entry = self._accumulators.get(var.handle)
        # handles restart after a reset, so the owner is checked too
        if entry is None or entry[0] is not var:
            self._drop_stale_accumulators()
            init = 0.0 if graph_mode else self.initial_accumulator_value
            acc = keep(full_like(var, init))
            self._accumulators[var.handle] = (var, acc)
            logger.debug("created accumulator for %r filled with %s", var.name, init)
        else:
            acc = entry[1]

        with no_grad(), scope():
            new_acc = acc + grad * grad
            var.assign(var - self.learning_rate * grad / sqrt(new_acc + self.epsilon))
            keep(new_acc)
        self._accumulators[var.handle] = (var, new_acc)
        acc.dispose()

    def dispose(self) -> None:
        if self._disposed:
            return
        for _, acc in self._accumulators.values():
            acc.dispose()
        logger.debug("disposed %d accumulators", len(self._accumulators))
        self._accumulators.clear()
        super().dispose()


def _check_shape(var: Variable, x: Array, what: str) -> None:
    if x.shape != var.shape:
        raise ShapeMismatchError(f"{what} of variable {var.name!r}", var.shape, x.shape)
