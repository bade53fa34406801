"""
Description:
    Exploratory figures: prior density and pooled posterior.
    USE THE CORRECT ENVIRONMENT:  CoinHMC

Author: John Gallagher
Created: 2026-10-19
Last Modified: 2026-10-19
Version: 0.1
"""
from typing import Optional, Sequence
import jax.numpy as jnp
import matplotlib.pyplot as plt
import numpy as np
from jax.scipy import stats

from datatypes import ChainResult, CoinflipProblem
from target import gen_beta_prior, conjugate_posterior
from transform import LogitTransform

plt.rcParams["axes.spines.right"] = False
plt.rcParams["axes.spines.top"] = False

def plot_prior(alpha: float = 2.0, beta: float = 2.0, ax=None):
    """Beta(alpha, beta) density on (0,1)"""
    if ax is None:
        _, ax = plt.subplots(figsize=(5, 3.5))
    grid = jnp.linspace(1e-3, 1 - 1e-3, 400)
    density = jnp.exp(gen_beta_prior(alpha, beta)(grid))
    ax.plot(np.asarray(grid), np.asarray(density), color="k")
    ax.set_xlabel("p")
    ax.set_ylabel("density")
    ax.set_title(f"Beta({alpha:g}, {beta:g}) prior")
    return ax.figure

def plot_posterior(
        chains: Sequence[ChainResult],
        problem: Optional[CoinflipProblem] = None,
        alpha: float = 2.0,
        beta: float = 2.0,
        save_path: Optional[str] = None
):
    """
    Trace of each chain and histogram of the pooled draws, with the exact
    conjugate posterior overlaid when the problem is given.
    """
    transform = LogitTransform()
    fig, (ax_trace, ax_hist) = plt.subplots(1, 2, figsize=(11, 3.5))

    for i, chain in enumerate(chains):
        p = np.asarray(transform.forward(chain.position[:, 0]))
        ax_trace.plot(p, lw=0.5, alpha=0.8, label=f"chain {i}")
    ax_trace.set_xlabel("draw")
    ax_trace.set_ylabel("p")
    ax_trace.legend(loc="upper right", fontsize=8)

    pool = np.concatenate(
        [np.asarray(transform.forward(chain.position[:, 0])) for chain in chains]
    )
    ax_hist.hist(pool, bins=50, density=True, color="0.7", label="NUTS")
    if problem is not None:
        a, b = conjugate_posterior(problem, alpha, beta)
        grid = jnp.linspace(1e-3, 1 - 1e-3, 400)
        ax_hist.plot(np.asarray(grid), np.asarray(stats.beta.pdf(grid, a, b)),
                     color="k", label=f"Beta({a:g}, {b:g})")
    ax_hist.set_xlabel("p")
    ax_hist.legend(loc="upper left", fontsize=8)

    fig.tight_layout()
    if save_path is not None:
        fig.savefig(save_path, dpi=150, bbox_inches="tight")
    return fig
