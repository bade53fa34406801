"""
Description:
    Unconstrained reparameterization and gradients of the target.
    USE THE CORRECT ENVIRONMENT:  CoinHMC

Author: John Gallagher
Created: 2026-10-19
Last Modified: 2026-10-19
Version: 0.1
"""
from typing import NamedTuple, Optional, Tuple
import jax
import jax.numpy as jnp
from datatypes import TargetDensity

class LogitTransform(NamedTuple):
    """
    Bijection R -> (0,1)
        forward(x) = 1 / (1 + exp(-x))
        inverse(p) = log(p / (1 - p))
        log|dp/dx| = log σ(x) + log σ(-x)
    """

    def forward(self, x: jnp.ndarray) -> jnp.ndarray:
        """unconstrained -> model space"""
        return jax.nn.sigmoid(x)

    def inverse(self, p: jnp.ndarray) -> jnp.ndarray:
        """model space -> unconstrained"""
        p = jnp.asarray(p)
        return jnp.log(p) - jnp.log1p(-p)

    def log_abs_det_jacobian(self, x: jnp.ndarray) -> jnp.ndarray:
        return jax.nn.log_sigmoid(x) + jax.nn.log_sigmoid(-x)

class TransformedDensity(NamedTuple):
    """
    log π̃(x) = log π(forward(x)) + log|J(x)|

    Sampling x from π̃ and mapping through forward gives draws from π.
    Positions may be scalars or length-1 vectors; the density is summed
    over the last so samplers can work with flat arrays.

    logit_target, when given, replaces target(forward(x)). It must agree
    with it and stay finite where sigmoid(x) rounds to 0 or 1 (|x| > ~37).
    """
    target: TargetDensity # log π(p), model space
    transform: LogitTransform = LogitTransform()
    logit_target: Optional[TargetDensity] = None # log π(forward(x)) as a function of x

    def __call__(self, x: jnp.ndarray) -> float:
        if self.logit_target is not None:
            log_target = self.logit_target(x)
        else:
            log_target = self.target(self.transform.forward(x))
        return jnp.sum(log_target + self.transform.log_abs_det_jacobian(x))

    def grad(self, x: jnp.ndarray) -> jnp.ndarray:
        """∂ log π̃ / ∂x, reverse mode"""
        return jax.grad(self)(jnp.asarray(x, dtype=float))

    def evaluate_with_gradient(self, x: jnp.ndarray) -> Tuple[float, float]:
        """
        Value and derivative in one forward-mode pass.

        Args:
            x: Unconstrained scalar

        Returns:
            (log_density, gradient)
        """
        x = jnp.asarray(x, dtype=float)
        return jax.jvp(self, (x,), (jnp.ones_like(x),))
