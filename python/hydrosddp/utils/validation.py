"""Input validation utilities."""

from typing import Iterable, Sequence, Tuple

import numpy as np

from ..exceptions import DimensionError, InvalidInputError

PROBABILITY_TOLERANCE = 1e-6


def validate_probabilities(
    probabilities: Sequence[float],
    what: str = "branches",
    normalize: bool = False,
) -> Tuple[float, ...]:
    """
    Check a discrete distribution's probabilities.

    Args:
        probabilities: Branch probabilities
        what: Label used in error messages
        normalize: Rescale to sum to one instead of raising

    Returns:
        The (possibly normalised) probabilities as a tuple
    """
    probs = np.asarray(list(probabilities), dtype=np.float64)
    if probs.size == 0:
        raise InvalidInputError(f"{what}: at least one branch is required")
    if np.any(np.isnan(probs)) or np.any(probs < 0):
        raise InvalidInputError(f"{what}: probabilities must be non-negative, got {probs.tolist()}")

    total = probs.sum()
    if normalize:
        if total <= 0:
            raise InvalidInputError(f"{what}: probabilities sum to {total}")
        probs = probs / total
    elif abs(total - 1.0) > PROBABILITY_TOLERANCE:
        raise InvalidInputError(f"{what}: probabilities sum to {total:.8f}, expected 1")
    return tuple(float(p) for p in probs)


def validate_state(state: Iterable[float], n_states: int) -> np.ndarray:
    """
    Convert a state to a read-only float vector of the expected length.

    A fresh array is always returned, so the caller's data is never aliased.
    """
    vec = np.array(state, dtype=np.float64).ravel()
    if vec.shape != (n_states,):
        raise DimensionError(f"state has {vec.size} entries, expected {n_states}")
    if np.any(np.isnan(vec)):
        raise InvalidInputError("state contains NaN values")
    vec.setflags(write=False)
    return vec


def check_finite(value: float, what: str) -> float:
    """Reject NaN and infinite scalars."""
    value = float(value)
    if not np.isfinite(value):
        raise InvalidInputError(f"{what} must be finite, got {value}")
    return value
