"""
Description:
    Core data structures for CoinHMC.
    USE THE CORRECT ENVIRONMENT:  CoinHMC

Author: John Gallagher
Created: 2026-10-19
Last Modified: 2026-10-19
Version: 0.1

All modules import from here to ensure type consistency and avoid indexing bugs.
"""
from typing import NamedTuple, Callable, Dict, Any, List
import jax.numpy as jnp
import numpy as np

from errors import InvalidParameterError

class CoinflipProblem(NamedTuple):
    """Sufficient statistic of a coinflip observation set"""
    N: int # total flips
    y: int # heads

    @classmethod
    def from_counts(cls, N: int, y: int):
        """Validate counts, 1 <= N and 0 <= y <= N"""
        if int(N) != N or int(y) != y:
            raise InvalidParameterError(f"counts must be integers, got N={N}, y={y}")
        N, y = int(N), int(y)
        if N < 1:
            raise InvalidParameterError(
                f"need at least one observation, got N={N}"
            )
        if not 0 <= y <= N:
            raise InvalidParameterError(f"need 0 <= y <= N, got y={y}, N={N}")
        return cls(N=N, y=y)

    @classmethod
    def from_flips(cls, flips):
        """Reduce a boolean sequence to (N, y)"""
        flips = np.asarray(flips, dtype=bool)
        if flips.ndim != 1:
            raise InvalidParameterError(
                f"flips must be one-dimensional, got shape {flips.shape}"
            )
        return cls.from_counts(N=flips.shape[0], y=int(np.sum(flips)))

class CoinflipParams(NamedTuple):
    """Model-space parameter record"""
    p: jnp.ndarray # probability of heads, in (0,1)

class ChainResult(NamedTuple):
    """Output of a single NUTS chain"""
    position: jnp.ndarray # (n_samples, 1) - unconstrained draws
    acceptance_rate: jnp.ndarray # (n_samples,)
    is_divergent: jnp.ndarray # (n_samples,)
    tree_depth: jnp.ndarray # (n_samples,) trajectory doublings
    num_integration_steps: jnp.ndarray # (n_samples,)
    step_size: float # adapted during warm-up
    inverse_mass_matrix: jnp.ndarray # adapted during warm-up

    @property
    def num_samples(self) -> int:
        return self.position.shape[0]

class Diagnostics(NamedTuple):
    """Convergence diagnostics across chains"""
    ess: float
    rhat: float # nan when undefined (single chain, zero variance)
    num_divergent: int
    mean_tree_depth: float
    accept_rate: float
    converged: bool

class PosteriorSummary(NamedTuple):
    mean: float
    sd: float
    num_draws: int

class SamplerConfig(NamedTuple):
    """Configuration for the NUTS driver"""
    num_samples: int = 1000 # draws kept per chain
    num_warmup: int = 1000 # adaptation steps per chain
    num_chains: int = 4
    target_acceptance_rate: float = 0.8
    max_num_doublings: int = 10 # bounds tree depth
    parallel: bool = True # thread pool over chains
    init_radius: float = 2.0 # uniform init in [-r, r], unconstrained

    def validate(self) -> "SamplerConfig":
        if self.num_samples < 1 or self.num_chains < 1 or self.num_warmup < 0:
            raise InvalidParameterError(
                "need num_samples >= 1, num_chains >= 1 and num_warmup >= 0, "
                f"got {self.num_samples}, {self.num_chains}, {self.num_warmup}"
            )
        if not 0.0 < self.target_acceptance_rate < 1.0:
            raise InvalidParameterError(
                f"target_acceptance_rate must be in (0,1), got {self.target_acceptance_rate}"
            )
        if self.max_num_doublings < 1:
            raise InvalidParameterError("max_num_doublings must be >= 1")
        if self.init_radius <= 0:
            raise InvalidParameterError("init_radius must be positive")
        return self

class PipelineConfig(NamedTuple):
    """End-to-end run configuration"""
    n_flips: int = 100
    p_true: float = 0.7
    seed: int = 0
    alpha: float = 2.0 # Beta prior
    beta: float = 2.0
    sampler: SamplerConfig = SamplerConfig()
    rhat_threshold: float = 1.01
    strict: bool = False # abort on non-convergence

class PipelineResult(NamedTuple):
    flips: jnp.ndarray
    problem: CoinflipProblem
    chains: List[ChainResult]
    diagnostics: Diagnostics
    pool: np.ndarray # model-space draws, all chains
    summary: PosteriorSummary

# Type aliases for clarity
TargetDensity = Callable[[Any], float]
LogDensity = Callable[[jnp.ndarray], float]
NUTSParameters = Dict[str, Any]
Observations = jnp.ndarray
