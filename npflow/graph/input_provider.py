"""
Input providers hand out one example per call to `Session.train`/`eval`.

The session asks a provider for a copy of the next example and gives the copy
back through `dispose_copy` once the example has been consumed.
"""

from __future__ import annotations

__all__ = ["InputProvider", "ArrayInputProvider", "ShuffledInputProviderBuilder"]

from typing import Protocol, Sequence, runtime_checkable

import numpy as np
from numpy.typing import ArrayLike

from npflow._array import Array, array
from npflow._errors import InputProviderExhaustedError


@runtime_checkable
class InputProvider(Protocol):
    def get_next_copy(self) -> Array:
        ...

    def dispose_copy(self, copy: Array) -> None:
        ...


class ArrayInputProvider:
    """
    Provide the examples of a fixed sequence in order.

    Parameters
    ----------
    examples : sequence of array_like
        The examples to hand out.
    cycle : bool, optional
        Start over from the first example once all of them have been
        provided. Otherwise (default) an InputProviderExhaustedError is raised.
    """

    def __init__(self, examples: Sequence[ArrayLike], cycle: bool = False) -> None:
        self._examples = [np.array(x) for x in examples]
        self._cycle = cycle
        self._index = 0

    def get_next_copy(self) -> Array:
        if self._index >= len(self._examples):
            if not self._cycle or not self._examples:
                raise InputProviderExhaustedError(
                    f"all {len(self._examples)} examples have been provided"
                )
            self._index = 0
        example = self._examples[self._index]
        self._index += 1
        return array(example)

    def dispose_copy(self, copy: Array) -> None:
        copy.dispose()


class _ShuffledInputProvider:
    def __init__(self, builder: ShuffledInputProviderBuilder, input_id: int) -> None:
        self._builder = builder
        self._input_id = input_id
        self._count = 0

    def get_next_copy(self) -> Array:
        example = self._builder._example(self._input_id, self._count)
        self._count += 1
        return array(example)

    def dispose_copy(self, copy: Array) -> None:
        copy.dispose()


class ShuffledInputProviderBuilder:
    """
    Build providers over several example lists of equal length, e.g. inputs
    and labels, that walk the lists in the same shuffled order. Every pass
    over the data uses a new permutation.

    Parameters
    ----------
    inputs : sequence of sequences of array_like
        One example list per provider. All lists must have the same, non-zero
        length.
    seed : int, optional
        Seed of the permutation generator.
    """

    def __init__(self, inputs: Sequence[Sequence[ArrayLike]], seed: int | None = None) -> None:
        if not inputs:
            raise ValueError("at least one input list is required")
        lengths = {len(examples) for examples in inputs}
        if len(lengths) != 1:
            raise ValueError(f"input lists must have the same length, got {sorted(lengths)}")
        (self._num_examples,) = lengths
        if self._num_examples == 0:
            raise ValueError("input lists must not be empty")
        self._inputs = [[np.array(x) for x in examples] for examples in inputs]
        self._rng = np.random.default_rng(seed)
        self._epochs: list[np.ndarray] = []

    def _example(self, input_id: int, position: int) -> np.ndarray:
        epoch, index = divmod(position, self._num_examples)
        while len(self._epochs) <= epoch:
            self._epochs.append(self._rng.permutation(self._num_examples))
        return self._inputs[input_id][self._epochs[epoch][index]]

    def get_input_providers(self) -> list[InputProvider]:
        return [_ShuffledInputProvider(self, i) for i in range(len(self._inputs))]
