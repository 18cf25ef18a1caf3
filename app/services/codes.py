import secrets
from typing import Optional, Protocol

MAX_CODE_LENGTH = 16


class RandomSource(Protocol):
    def randrange(self, stop: int) -> int: ...


class NumericCodeGenerator:
    """Produces fixed-width, zero-padded decimal codes.

    Values are drawn uniformly from ``[0, 10**length)``. Any object with a
    ``randrange`` method can be supplied as the source; the default is
    ``secrets.SystemRandom``.
    """

    def __init__(self, length: int, rng: Optional[RandomSource] = None) -> None:
        if not 1 <= length <= MAX_CODE_LENGTH:
            raise ValueError(f"OTP length must be between 1 and {MAX_CODE_LENGTH}")
        self._length = length
        self._upper = 10**length
        self._rng = rng or secrets.SystemRandom()

    @property
    def length(self) -> int:
        return self._length

    def __call__(self) -> str:
        value = self._rng.randrange(self._upper)
        return str(value).zfill(self._length)
