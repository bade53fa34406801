"""
Description:
    Exception hierarchy for CoinHMC.
    USE THE CORRECT ENVIRONMENT:  CoinHMC

Author: John Gallagher
Created: 2026-10-19
Last Modified: 2026-10-19
Version: 0.1
"""
from typing import Dict, List, Optional


class CoinHMCError(Exception):
    """Base class for all CoinHMC errors"""


class InvalidParameterError(CoinHMCError, ValueError):
    """Bad flip count, probability, prior or sampler setting"""


class SamplingError(CoinHMCError):
    """
    One or more chains raised while sampling.

    Sibling chains still run to completion; their results are kept in
    `results` (None at the index of each failed chain).
    """
    def __init__(self, failures: Dict[int, BaseException], results: List[Optional[object]]):
        self.failures = failures
        self.results = results
        detail = ", ".join(
            f"chain {i}: {type(exc).__name__}: {exc}" for i, exc in sorted(failures.items())
        )
        super().__init__(f"{len(failures)} of {len(results)} chains failed ({detail})")


class ConvergenceError(CoinHMCError):
    """R-hat above threshold in strict mode"""
    def __init__(self, rhat: float, threshold: float):
        self.rhat = rhat
        self.threshold = threshold
        super().__init__(f"chains did not converge: R-hat {rhat:.4f} > {threshold}")


class StageError(CoinHMCError):
    """Fatal failure attributed to one pipeline stage"""
    STAGES = ("simulation", "density", "sampling", "diagnostics")

    def __init__(self, stage: str, cause: BaseException):
        self.stage = stage
        self.cause = cause
        super().__init__(f"{stage} stage failed: {type(cause).__name__}: {cause}")
