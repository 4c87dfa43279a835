__all__ = ["sgd", "adagrad"]

from npflow.optim import DEFAULT_EPSILON, AdagradOptimizer, SGDOptimizer


def sgd(learning_rate: float) -> SGDOptimizer:
    return SGDOptimizer(learning_rate)


def adagrad(
    learning_rate: float,
    initial_accumulator_value: float = 0.1,
    epsilon: float = DEFAULT_EPSILON,
) -> AdagradOptimizer:
    """
    Build an Adagrad optimizer.

    Parameters
    ----------
    learning_rate : float
        Step size. Must be positive.
    initial_accumulator_value : float, optional
        Starting value of the squared-gradient accumulators (default 0.1).
    epsilon : float, optional
        Numerical stability term added before the square root (default 1e-8).
    """
    return AdagradOptimizer(learning_rate, initial_accumulator_value, epsilon)
