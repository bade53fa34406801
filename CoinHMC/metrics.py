"""
Description:
    MCMC diagnostics and posterior summaries.
    USE THE CORRECT ENVIRONMENT:  CoinHMC

Author: John Gallagher
Created: 2026-10-19
Last Modified: 2026-10-19
Version: 0.1
"""
from typing import Sequence
import jax.numpy as jnp
import numpy as np
from blackjax.diagnostics import effective_sample_size as _ess
from blackjax.diagnostics import potential_scale_reduction

from datatypes import ChainResult, Diagnostics, PosteriorSummary
from errors import InvalidParameterError
from sampler import extract_positions
from transform import LogitTransform

def stack_draws(chains: Sequence[ChainResult]) -> np.ndarray:
    """(n_chains, n_samples) copy of the unconstrained draws"""
    return np.array(extract_positions(chains), dtype=float)

def effective_sample_size(draws: np.ndarray) -> float:
    """
    Autocorrelation-based ESS over all chains.

    draws: (n_chains, n_samples). Capped at the total number of draws;
    nan when the draws have no variance.
    """
    draws = np.asarray(draws, dtype=float)
    n_chains, n_samples = draws.shape
    if n_samples < 2 or not np.all(np.isfinite(draws)) or np.ptp(draws) == 0.0:
        return float("nan")
    ess = float(np.squeeze(_ess(jnp.asarray(draws), chain_axis=0, sample_axis=1)))
    return min(ess, float(n_chains * n_samples))

def split_rhat(draws: np.ndarray) -> float:
    """
    Split potential scale reduction.

    Each chain is cut into two halves before the Gelman-Rubin comparison,
    so drift within a chain also inflates R-hat. Returns nan for a single
    chain, fewer than 4 draws per chain, or zero-variance draws.
    """
    draws = np.asarray(draws, dtype=float)
    n_chains, n_samples = draws.shape
    if n_chains < 2 or n_samples < 4:
        return float("nan")
    half = n_samples // 2
    halves = np.concatenate([draws[:, :half], draws[:, n_samples - half:]], axis=0)
    within = np.mean(np.var(halves, axis=1, ddof=1))
    if not np.isfinite(within) or within == 0.0:
        return float("nan")
    return float(np.squeeze(
        potential_scale_reduction(jnp.asarray(halves), chain_axis=0, sample_axis=1)
    ))

def diagnose(
        chains: Sequence[ChainResult],
        rhat_threshold: float = 1.01
) -> Diagnostics:
    """Read-only reduction over chain results"""
    draws = stack_draws(chains)
    rhat = split_rhat(draws)
    if len(chains) < 2:
        converged = True # nothing to compare against
    else:
        converged = bool(np.isfinite(rhat) and rhat <= rhat_threshold)
    return Diagnostics(
        ess=effective_sample_size(draws),
        rhat=rhat,
        num_divergent=int(sum(int(jnp.sum(c.is_divergent)) for c in chains)),
        mean_tree_depth=float(np.mean([jnp.mean(c.tree_depth) for c in chains])),
        accept_rate=float(np.mean([jnp.mean(c.acceptance_rate) for c in chains])),
        converged=converged,
    )

def pool_samples(
        chains: Sequence[ChainResult],
        transform: LogitTransform = LogitTransform()
) -> np.ndarray:
    """All chains' draws mapped back to (0,1), chain by chain"""
    return np.asarray(transform.forward(jnp.asarray(stack_draws(chains)))).reshape(-1)

def summarize(pool: np.ndarray) -> PosteriorSummary:
    pool = np.asarray(pool, dtype=float)
    if pool.size == 0:
        raise InvalidParameterError("cannot summarize an empty sample pool")
    sd = float(np.std(pool, ddof=1)) if pool.size > 1 else float("nan")
    return PosteriorSummary(mean=float(np.mean(pool)), sd=sd, num_draws=int(pool.size))

def format_report(summary: PosteriorSummary) -> str:
    return (
        f"posterior mean: {round(summary.mean, 2)}\n"
        f"posterior sd: {round(summary.sd, 2)}"
    )

def format_diagnostics(diagnostics: Diagnostics) -> str:
    return (
        f"ESS: {diagnostics.ess:.1f}, split R-hat: {diagnostics.rhat:.4f}, "
        f"divergent: {diagnostics.num_divergent}, "
        f"mean tree depth: {diagnostics.mean_tree_depth:.2f}, "
        f"accept rate: {diagnostics.accept_rate:.3f}"
    )
