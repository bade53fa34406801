"""
Description:
    Coinflip data simulation.
    USE THE CORRECT ENVIRONMENT:  CoinHMC

Author: John Gallagher
Created: 2026-10-19
Last Modified: 2026-10-19
Version: 0.1
"""
import jax
import jax.numpy as jnp
import jax.random as jr

from datatypes import Observations
from errors import InvalidParameterError

def simulate_flips(
        key: jax.random.PRNGKey,
        n_flips: int,
        p: float
) -> Observations:
    """
    Draw n_flips independent Bernoulli(p) trials.

    Args:
        key: JAX random key
        n_flips: Number of trials, N > 0
        p: Probability of heads, strictly inside (0,1)

    Returns:
        (n_flips,) boolean array, True for heads
    """
    if isinstance(n_flips, bool) or int(n_flips) != n_flips or n_flips <= 0:
        raise InvalidParameterError(f"n_flips must be a positive integer, got {n_flips}")
    if not 0.0 < p < 1.0:
        raise InvalidParameterError(f"p must be in (0,1), got {p}")
    return jr.bernoulli(key, p=jnp.asarray(p), shape=(int(n_flips),))
