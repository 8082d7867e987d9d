"""
Iteration table logging for SDDP training.

Prints a fixed-width header followed by one row per iteration, through the
standard ``logging`` module so applications decide where it goes.
"""

import logging
from contextlib import contextmanager
from typing import Iterator, Optional


class IterationLogger:
    """
    Write the SDDP progress table.

    Args:
        logger: Target logger (default: ``hydrosddp.sddp``)
        num_slots: Table width in characters
    """

    columns = ("Iteration", "Lower bound", "Sampled cost", "Cuts", "Time (s)")
    widths = (10, 16, 16, 8, 10)

    def __init__(self, logger: Optional[logging.Logger] = None, num_slots: int = 60) -> None:
        self.logger = logger or logging.getLogger("hydrosddp.sddp")
        self.num_slots = num_slots

    def header(self, title: str = "SDDP training") -> None:
        num_slots = self.num_slots
        self.logger.info(f"{title:-^{num_slots}}")
        row = "".join(
            f"{name:<{w}}" if i == 0 else f"{name:>{w}}"
            for i, (name, w) in enumerate(zip(self.columns, self.widths))
        )
        self.logger.info(row)
        self.logger.info("-" * num_slots)

    def row(
        self,
        iteration: int,
        lower_bound: float,
        sampled_cost: float,
        n_cuts: int,
        elapsed: float,
    ) -> None:
        w = self.widths
        self.logger.info(
            f"{iteration:<{w[0]}}{lower_bound:>{w[1]}.4f}{sampled_cost:>{w[2]}.4f}"
            f"{n_cuts:>{w[3]}}{elapsed:>{w[4]}.3f}"
        )

    def footer(self, message: str) -> None:
        self.logger.info("-" * self.num_slots)
        self.logger.info(message)


@contextmanager
def console_logging(enabled: bool, name: str = "hydrosddp") -> Iterator[None]:
    """
    Attach a console handler to the package logger for the duration of a call.

    Used by ``verbose=True`` arguments; does nothing when disabled.
    """
    if not enabled:
        yield
        return

    pkg_logger = logging.getLogger(name)
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(message)s"))
    previous_level = pkg_logger.level
    pkg_logger.addHandler(handler)
    if previous_level == logging.NOTSET or previous_level > logging.INFO:
        pkg_logger.setLevel(logging.INFO)
    try:
        yield
    finally:
        pkg_logger.removeHandler(handler)
        pkg_logger.setLevel(previous_level)
