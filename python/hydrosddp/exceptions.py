"""
hydrosddp Exception Classes
===========================

Custom exceptions and warnings for hydrosddp error handling.
"""

from typing import Optional


class HydroSDDPError(Exception):
    """Base exception for all hydrosddp errors."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class InfeasibleError(HydroSDDPError):
    """
    Raised when a linear program is primal infeasible.

    This means no release schedule satisfies the balance equations
    and volume bounds.
    """

    def __init__(self, message: str = "Problem is infeasible") -> None:
        super().__init__(message)


class InfeasibleStageError(InfeasibleError):
    """
    Raised when the subproblem of a specific stage admits no solution.

    Attributes:
        stage: Index of the offending stage (0-based)
        phase: Where it happened: "deterministic", "forward", "backward",
            "simulation" or "evaluation"
    """

    def __init__(
        self,
        stage: int,
        phase: str = "deterministic",
        message: Optional[str] = None,
    ) -> None:
        self.stage = stage
        self.phase = phase
        if message is None:
            message = f"Stage {stage} is infeasible ({phase})"
        super().__init__(message)


class UnboundedError(HydroSDDPError):
    """
    Raised when the problem is unbounded (dual infeasible).

    In a stage subproblem this means theta has no valid lower bound.
    """

    def __init__(self, message: str = "Problem is unbounded") -> None:
        super().__init__(message)


class SolverFailureError(HydroSDDPError):
    """
    Raised when the LP solver errors or times out on both attempts.

    Attributes:
        status: Status of the last attempt
        attempts: Number of attempts made
    """

    def __init__(
        self,
        message: str = "LP solver failed",
        status: Optional[str] = None,
        attempts: int = 0,
    ) -> None:
        self.status = status
        self.attempts = attempts
        super().__init__(message)


class DimensionError(HydroSDDPError):
    """
    Raised when matrix/vector dimensions are incompatible.
    """

    def __init__(self, message: str) -> None:
        super().__init__(f"Dimension mismatch: {message}")


class InvalidInputError(HydroSDDPError):
    """
    Raised when input data is invalid.

    Examples: volume bounds out of order, probabilities not summing to one,
    unknown reservoir ids in an inflow table.
    """

    def __init__(self, message: str) -> None:
        super().__init__(f"Invalid input: {message}")


class ConvergenceWarning(UserWarning):
    """
    Issued when SDDP training stops on its iteration budget.

    The returned policy is usable but its optimality gap was not closed.
    """
