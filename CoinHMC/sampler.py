"""
Description:
    MCMC sampler driver: window-adapted NUTS over independent chains.
    USE THE CORRECT ENVIRONMENT:  CoinHMC

Author: John Gallagher
Created: 2026-10-19
Last Modified: 2026-10-19
Version: 0.1
"""
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, List, Sequence, Tuple, Any

import blackjax
import jax
import jax.numpy as jnp
import jax.random as jr

from datatypes import ChainResult, SamplerConfig, LogDensity, NUTSParameters
from errors import SamplingError

logger = logging.getLogger(__name__)

def draw_initial_position(key: jax.random.PRNGKey, dim: int, radius: float) -> jnp.ndarray:
    """
    Uniform start in [-radius, radius] on the unconstrained scale.

    Overdispersed starts make split R-hat meaningful.
    """
    return jr.uniform(key, shape=(dim,), minval=-radius, maxval=radius)

def run_warmup(
    key: jax.random.PRNGKey,
    logdensity: LogDensity,
    position: jnp.ndarray,
    config: SamplerConfig
) -> Tuple[Any, NUTSParameters]:
    """
    Stan-style window adaptation of step size and diagonal mass matrix.

    Args:
        key: JAX random key
        logdensity: Unconstrained log-density
        position: Initial position
        config: Sampler configuration

    Returns:
        (last warm-up state, adapted NUTS parameters)
    """
    warmup = blackjax.window_adaptation(
        blackjax.nuts,
        logdensity,
        is_mass_matrix_diagonal=True,
        target_acceptance_rate=config.target_acceptance_rate,
        max_num_doublings=config.max_num_doublings,
    )
    (state, parameters), _ = warmup.run(key, position, num_steps=config.num_warmup)
    return state, parameters

def gen_nuts_kernel(
    logdensity: LogDensity,
    parameters: NUTSParameters
) -> Callable:
    """
    Generate fixed-parameter NUTS kernel.

    Divergent trajectories (non-finite or exploding energy) are rejected
    inside the kernel and flagged in the returned info.

    Returns:
        kernel(state, key) -> (state, (position, info)) for scan
    """
    nuts = blackjax.nuts(logdensity, **parameters)

    def nuts_kernel(state, key):
        state, info = nuts.step(key, state)
        return state, (state.position, info)

    return nuts_kernel

def nuts_sampler(
    initial_state: Any,
    keys: jax.random.PRNGKey,
    kernel: Callable
) -> Tuple:
    """
    Run NUTS sampler.

    Args:
        initial_state: State after warm-up
        keys: Array of random keys (one per sample)
        kernel: Output of gen_nuts_kernel

    Returns:
        (positions, info) stacked over iterations
    """
    _, samples = jax.lax.scan(kernel, initial_state, xs=keys)
    return samples

def run_chain(
    key: jax.random.PRNGKey,
    logdensity: LogDensity,
    config: SamplerConfig,
    dim: int = 1
) -> ChainResult:
    """
    warm-up (adaptation active) -> sampling (adaptation frozen) -> done

    Args:
        key: This chain's own random key
        logdensity: Unconstrained log-density
        config: Sampler configuration
        dim: Dimension of the unconstrained space

    Returns:
        ChainResult with num_samples draws
    """
    init_key, warmup_key, sample_key = jr.split(key, 3)
    position = draw_initial_position(init_key, dim, config.init_radius)

    if config.num_warmup > 0:
        state, parameters = run_warmup(warmup_key, logdensity, position, config)
    else:
        parameters = {
            "step_size": 1.0,
            "inverse_mass_matrix": jnp.ones(dim),
            "max_num_doublings": config.max_num_doublings,
        }
        state = blackjax.nuts(logdensity, **parameters).init(position)

    kernel = gen_nuts_kernel(logdensity, parameters)
    keys = jr.split(sample_key, config.num_samples)
    positions, info = nuts_sampler(state, keys, kernel)

    return ChainResult(
        position=positions,
        acceptance_rate=info.acceptance_rate,
        is_divergent=info.is_divergent,
        tree_depth=info.num_trajectory_expansions,
        num_integration_steps=info.num_integration_steps,
        step_size=float(parameters["step_size"]),
        inverse_mass_matrix=jnp.asarray(parameters["inverse_mass_matrix"]),
    )

def map_chains(
    fn: Callable[[int, jax.random.PRNGKey], Any],
    keys: Sequence[jax.random.PRNGKey],
    parallel: bool = True
) -> List[Any]:
    """
    Apply fn(chain_id, key) to every chain, preserving chain order.

    A chain that raises does not stop its siblings. Once every chain has
    finished, any failures are raised together as a SamplingError that also
    carries the surviving results.
    """
    results = [None] * len(keys)
    failures = {}

    def _run(chain_id):
        try:
            results[chain_id] = fn(chain_id, keys[chain_id])
        except Exception as exc:
            logger.error("chain %d failed: %s", chain_id, exc)
            failures[chain_id] = exc

    if parallel and len(keys) > 1:
        with ThreadPoolExecutor(max_workers=len(keys)) as pool:
            list(pool.map(_run, range(len(keys))))
    else:
        for chain_id in range(len(keys)):
            _run(chain_id)

    if failures:
        raise SamplingError(failures, results)
    return results

def sample_chains(
    key: jax.random.PRNGKey,
    logdensity: LogDensity,
    config: SamplerConfig,
    dim: int = 1
) -> List[ChainResult]:
    """
    Run config.num_chains independent chains.

    Each chain gets its own key from jr.split, so no generator state is
    shared between threads and streams do not overlap.
    """
    config = config.validate()
    chain_keys = jr.split(key, config.num_chains)

    def _chain(chain_id, chain_key):
        logger.debug("chain %d: warm-up %d, sampling %d",
                     chain_id, config.num_warmup, config.num_samples)
        result = run_chain(chain_key, logdensity, config, dim)
        logger.debug("chain %d: step size %.3g, accept %.3f, divergent %d",
                     chain_id, result.step_size, compute_accept_rate(result),
                     int(jnp.sum(result.is_divergent)))
        return result

    return map_chains(_chain, list(chain_keys), parallel=config.parallel)

def extract_positions(chains: Sequence[ChainResult]) -> jnp.ndarray:
    """
    Stack unconstrained positions.

    Returns:
        (n_chains, n_samples) array for a scalar parameter
    """
    return jnp.stack([chain.position[:, 0] for chain in chains])

def compute_accept_rate(chain: ChainResult) -> float:
    """Mean NUTS acceptance statistic, in [0, 1]"""
    return float(jnp.mean(chain.acceptance_rate))
