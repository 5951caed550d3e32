"""Random source protocol — satisfied by ``random.Random``."""
from typing import Protocol, Sequence, TypeVar

T = TypeVar("T")


class RandomSource(Protocol):
    """Seedable randomness for symbol choice, drop size and tick delay."""

    def choice(self, seq: Sequence[T]) -> T: ...

    def uniform(self, a: float, b: float) -> float: ...
