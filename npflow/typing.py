from typing import Sequence, SupportsIndex, Union

__all__ = ["ShapeLike"]

ShapeLike = Union[SupportsIndex, Sequence[SupportsIndex]]
