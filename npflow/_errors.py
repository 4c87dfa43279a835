__all__ = ["DisposedError", "InputProviderExhaustedError", "ShapeMismatchError"]


class ShapeMismatchError(ValueError):
    """
    Raised when a tensor does not have the shape its counterpart requires,
    e.g. a gradient whose shape differs from the variable it updates.
    """

    def __init__(self, what: str, expected: tuple[int, ...], got: tuple[int, ...]) -> None:
        super().__init__(f"{what} has shape {got}, expected {expected}")
        self.expected = expected
        self.got = got


class DisposedError(RuntimeError):
    """
    Raised when an object is used after its resources have been released.
    """


class InputProviderExhaustedError(RuntimeError):
    """
    Raised when an input provider has no further example to hand out.
    """
