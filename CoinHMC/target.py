"""
Description:
    Target distribution generators.
    USE THE CORRECT ENVIRONMENT:  CoinHMC

Author: John Gallagher
Created: 2026-10-19
Last Modified: 2026-10-19
Version: 0.1
"""
from typing import Tuple
import jax
import jax.numpy as jnp
from jax.scipy import stats
from jax.scipy.special import betaln, gammaln
from datatypes import CoinflipProblem, TargetDensity
from errors import InvalidParameterError

def _check_prior(alpha: float, beta: float):
    if not (alpha > 0 and beta > 0):
        raise InvalidParameterError(
            f"Beta prior needs alpha > 0 and beta > 0, got ({alpha}, {beta})"
        )

def _unpack(theta) -> jnp.ndarray:
    """Accept a bare p or a record with field p"""
    return jnp.asarray(getattr(theta, "p", theta))

def gen_beta_prior(
        alpha: float = 2.0,
        beta: float = 2.0
) -> TargetDensity:
    _check_prior(alpha, beta)

    def prior(theta) -> float:
        """Beta(alpha, beta) log-density, -inf outside (0,1)"""
        p = _unpack(theta)
        in_support = (p > 0.0) & (p < 1.0)
        p_safe = jnp.where(in_support, p, 0.5)
        return jnp.where(
            in_support, stats.beta.logpdf(p_safe, alpha, beta), -jnp.inf
        )

    return prior

def gen_coinflip_posterior(
        problem: CoinflipProblem,
        alpha: float = 2.0,
        beta: float = 2.0
) -> TargetDensity:
    """
    Unnormalized coinflip log-posterior.

    log π(p) = log Beta(p | alpha, beta) + log Binomial(y | N, p)

    Only jax.numpy / jax.scipy operations are used so the result can be
    traced by jax.grad and jax.jvp. Out-of-support p gives -inf; p is
    swapped for an interior point before evaluation so gradients stay finite.
    """
    if not isinstance(problem, CoinflipProblem):
        raise InvalidParameterError(
            f"expected a CoinflipProblem, got {type(problem).__name__}"
        )
    _check_prior(alpha, beta)
    N, y = problem.N, problem.y

    def target(theta) -> float:
        p = _unpack(theta)
        in_support = (p > 0.0) & (p < 1.0)
        p_safe = jnp.where(in_support, p, 0.5)
        log_prior = stats.beta.logpdf(p_safe, alpha, beta)
        log_lik = stats.binom.logpmf(y, N, p_safe)
        return jnp.where(in_support, log_prior + log_lik, -jnp.inf)

    return target

def gen_coinflip_logit_posterior(
        problem: CoinflipProblem,
        alpha: float = 2.0,
        beta: float = 2.0
) -> TargetDensity:
    """
    The coinflip log-posterior as a function of x = logit(p).

    log π = (alpha - 1 + y) log σ(x) + (beta - 1 + N - y) log σ(-x)
            + log C(N, y) - log B(alpha, beta)

    Same values as gen_coinflip_posterior(problem)(sigmoid(x)), finite for all x.
    """
    if not isinstance(problem, CoinflipProblem):
        raise InvalidParameterError(
            f"expected a CoinflipProblem, got {type(problem).__name__}"
        )
    _check_prior(alpha, beta)
    N, y = problem.N, problem.y
    log_norm = (gammaln(N + 1.0) - gammaln(y + 1.0) - gammaln(N - y + 1.0)
                - betaln(alpha, beta))

    def logit_target(x) -> float:
        x = jnp.asarray(x)
        return ((alpha - 1.0 + y) * jax.nn.log_sigmoid(x)
                + (beta - 1.0 + N - y) * jax.nn.log_sigmoid(-x)
                + log_norm)

    return logit_target

def conjugate_posterior(
        problem: CoinflipProblem,
        alpha: float = 2.0,
        beta: float = 2.0
) -> Tuple[float, float]:
    """Exact Beta(alpha + y, beta + N - y) posterior parameters"""
    _check_prior(alpha, beta)
    return alpha + problem.y, beta + problem.N - problem.y

def beta_moments(a: float, b: float) -> Tuple[float, float]:
    """Mean and standard deviation of Beta(a, b)"""
    mean = a / (a + b)
    sd = (a * b / ((a + b) ** 2 * (a + b + 1))) ** 0.5
    return mean, sd
