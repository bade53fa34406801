"""
Test suite for CoinHMC.

Checks each pipeline stage against closed-form results: the Beta-Binomial
posterior is conjugate, so the exact posterior Beta(alpha + y, beta + N - y)
is available to compare the NUTS output against.
"""

import math

import jax
import jax.numpy as jnp
import matplotlib
import numpy as np
import pytest

matplotlib.use("Agg")

from datatypes import CoinflipProblem, CoinflipParams, PipelineConfig, SamplerConfig
from errors import InvalidParameterError, SamplingError, StageError, ConvergenceError
from metrics import (
    diagnose, effective_sample_size, format_report, pool_samples, split_rhat,
    stack_draws, summarize
)
from pipeline import config_from_args, main, parse_args, run_pipeline
from plots import plot_posterior, plot_prior
from sampler import compute_accept_rate, map_chains, sample_chains
from simulate import simulate_flips
from target import (
    beta_moments, conjugate_posterior, gen_beta_prior, gen_coinflip_logit_posterior,
    gen_coinflip_posterior
)
from transform import LogitTransform, TransformedDensity

# Enable 64-bit precision
jax.config.update("jax_enable_x64", True)

FAST = SamplerConfig(num_samples=200, num_warmup=200, num_chains=2)


# ============================================================================
# Data simulation
# ============================================================================

def test_simulate_flips():
    """N booleans out, y within [0, N]"""
    key = jax.random.PRNGKey(0)
    for N, p in [(1, 0.5), (10, 0.1), (100, 0.7), (1000, 0.99)]:
        flips = simulate_flips(key, N, p)
        problem = CoinflipProblem.from_flips(flips)
        assert flips.shape == (N,)
        assert flips.dtype == jnp.bool_
        assert problem.N == N
        assert problem.y == int(jnp.sum(flips))
        assert 0 <= problem.y <= N


def test_simulate_flips_frequency():
    flips = simulate_flips(jax.random.PRNGKey(42), 100_000, 0.7)
    freq = float(jnp.mean(flips))
    print(f"Empirical frequency: {freq:.4f}")
    assert abs(freq - 0.7) < 0.01, "Bernoulli frequency off!"


def test_simulate_flips_seeded():
    a = simulate_flips(jax.random.PRNGKey(7), 50, 0.3)
    b = simulate_flips(jax.random.PRNGKey(7), 50, 0.3)
    assert bool(jnp.all(a == b))


def test_simulate_flips_invalid():
    key = jax.random.PRNGKey(0)
    for N, p in [(0, 0.5), (-3, 0.5), (2.5, 0.5), (10, 0.0), (10, 1.0), (10, 1.5)]:
        with pytest.raises(InvalidParameterError):
            simulate_flips(key, N, p)


# ============================================================================
# Posterior model
# ============================================================================

def test_problem_construction():
    problem = CoinflipProblem.from_flips([True, False, True, True])
    assert problem == CoinflipProblem(N=4, y=3)
    assert CoinflipProblem.from_counts(100, 70) == CoinflipProblem(100, 70)


def test_problem_empty_rejected():
    """N = 0 has no likelihood to speak of: rejected, not reverted to the prior"""
    with pytest.raises(InvalidParameterError):
        CoinflipProblem.from_flips([])
    with pytest.raises(InvalidParameterError):
        CoinflipProblem.from_counts(0, 0)
    with pytest.raises(InvalidParameterError):
        CoinflipProblem.from_counts(10, 11)
    with pytest.raises(InvalidParameterError):
        CoinflipProblem.from_counts(10, -1)


def test_posterior_matches_closed_form():
    """log Beta(p|2,2) + log Binom(y|N,p) written out by hand"""
    N, y, p = 100, 70, 0.63
    target = gen_coinflip_posterior(CoinflipProblem(N, y))
    log_prior = math.log(6.0 * p * (1 - p))
    log_lik = (math.lgamma(N + 1) - math.lgamma(y + 1) - math.lgamma(N - y + 1)
               + y * math.log(p) + (N - y) * math.log(1 - p))
    assert np.isclose(float(target(p)), log_prior + log_lik, atol=1e-8)
    assert np.isclose(float(target(CoinflipParams(p=p))), log_prior + log_lik, atol=1e-8)


def test_posterior_symmetry():
    """Beta(2,2) is symmetric: π(p | N, y) == π(1-p | N, N-y)"""
    for N, y in [(1, 0), (10, 3), (100, 70), (57, 57)]:
        target = gen_coinflip_posterior(CoinflipProblem(N, y))
        mirrored = gen_coinflip_posterior(CoinflipProblem(N, N - y))
        for p in [0.01, 0.2, 0.5, 0.77, 0.999]:
            assert np.isclose(float(target(p)), float(mirrored(1 - p)), atol=1e-9), \
                f"Symmetry failed at N={N}, y={y}, p={p}"


def test_posterior_out_of_support():
    target = gen_coinflip_posterior(CoinflipProblem(100, 70))
    for p in [-0.5, 0.0, 1.0, 1.5]:
        assert float(target(p)) == -jnp.inf
        assert np.isfinite(float(jax.grad(target)(p))), "NaN gradient outside support"


def test_posterior_gradient():
    """AD gradient at p=0.5, N=100, y=70 vs finite differences"""
    target = gen_coinflip_posterior(CoinflipProblem(100, 70))
    p, h = 0.5, 1e-6
    ad = float(jax.grad(target)(p))
    fd = (float(target(p + h)) - float(target(p - h))) / (2 * h)
    # (a-1)/p - (b-1)/(1-p) + y/p - (N-y)/(1-p)
    exact = 1 / p - 1 / (1 - p) + 70 / p - 30 / (1 - p)
    print(f"AD: {ad:.8f}, FD: {fd:.8f}, exact: {exact:.8f}")
    assert abs(ad - fd) < 1e-4, "Gradient test failed!"
    assert abs(ad - exact) < 1e-8


def test_prior_and_conjugate():
    prior = gen_beta_prior(2.0, 2.0)
    assert np.isclose(float(jnp.exp(prior(0.5))), 1.5)
    assert float(prior(1.2)) == -jnp.inf
    assert conjugate_posterior(CoinflipProblem(100, 70)) == (72.0, 32.0)
    with pytest.raises(InvalidParameterError):
        gen_beta_prior(0.0, 1.0)


# ============================================================================
# Transform
# ============================================================================

def test_transform_round_trip():
    transform = LogitTransform()
    p = jnp.linspace(0.001, 0.999, 101)
    x = jnp.linspace(-15.0, 15.0, 101)
    assert np.allclose(transform.forward(transform.inverse(p)), p, atol=1e-12)
    assert np.allclose(transform.inverse(transform.forward(x)), x, atol=1e-6)
    assert bool(jnp.all((transform.forward(x) > 0) & (transform.forward(x) < 1)))


def test_log_jacobian():
    """log|dp/dx| against the derivative of the sigmoid"""
    transform = LogitTransform()
    for x in [-4.0, -0.3, 0.0, 2.5]:
        dp_dx = jax.grad(transform.forward)(x)
        assert np.isclose(float(transform.log_abs_det_jacobian(x)), math.log(float(dp_dx)))


def test_evaluate_with_gradient():
    target = gen_coinflip_posterior(CoinflipProblem(100, 70))
    density = TransformedDensity(target)
    transform = density.transform
    h = 1e-6
    for x in [-2.0, 0.0, 0.85, 3.0]:
        value, grad = density.evaluate_with_gradient(x)
        expected = target(transform.forward(x)) + transform.log_abs_det_jacobian(x)
        fd = (float(density(x + h)) - float(density(x - h))) / (2 * h)
        assert np.isclose(float(value), float(expected), atol=1e-10)
        assert abs(float(grad) - fd) < 1e-4
        assert np.isclose(float(grad), float(density.grad(x)), atol=1e-10)

    # Scalar and length-1 vector positions agree
    assert np.isclose(float(density(0.4)), float(density(jnp.array([0.4]))))


def test_logit_posterior():
    """Logit-scale posterior agrees with target(sigmoid(x)) and stays finite far out"""
    problem = CoinflipProblem(100, 70)
    target = gen_coinflip_posterior(problem)
    logit_target = gen_coinflip_logit_posterior(problem)
    transform = LogitTransform()
    for x in [-3.0, -0.5, 0.0, 0.85, 2.0]:
        assert np.isclose(float(logit_target(x)), float(target(transform.forward(x))),
                          atol=1e-9), f"Logit posterior mismatch at x={x}"

    plain = TransformedDensity(target)
    stable = TransformedDensity(target, logit_target=logit_target)
    assert np.isclose(float(plain(0.85)), float(stable(0.85)), atol=1e-9)
    for x in [40.0, 200.0, -800.0]:
        assert float(plain(x)) == -jnp.inf
        assert np.isfinite(float(stable(x)))
        assert np.isfinite(float(stable.grad(x)))
    # (alpha + y) log σ(x) + (beta + N - y) log σ(-x) + const, so slope -(beta + N - y) far right
    assert np.isclose(float(stable.grad(200.0)), -32.0, atol=1e-8)


# ============================================================================
# Sampler and diagnostics
# ============================================================================

def test_map_chains_isolates_failures():
    """A failing chain leaves its siblings' results intact"""
    keys = list(jax.random.split(jax.random.PRNGKey(0), 4))

    def fn(chain_id, key):
        if chain_id == 2:
            raise RuntimeError("boom")
        return chain_id * 10

    for parallel in (True, False):
        with pytest.raises(SamplingError) as info:
            map_chains(fn, keys, parallel=parallel)
        assert list(info.value.failures) == [2]
        assert info.value.results == [0, 10, None, 30]

    assert map_chains(lambda i, k: i, keys) == [0, 1, 2, 3]


def test_sampler_config_validation():
    density = TransformedDensity(gen_coinflip_posterior(CoinflipProblem(10, 5)))
    for bad in [FAST._replace(num_chains=0), FAST._replace(num_samples=0),
                FAST._replace(target_acceptance_rate=1.0)]:
        with pytest.raises(InvalidParameterError):
            sample_chains(jax.random.PRNGKey(0), density, bad)


def test_rhat_single_chain():
    draws = np.asarray(jax.random.normal(jax.random.PRNGKey(0), (1, 500)))
    assert math.isnan(split_rhat(draws))
    ess = effective_sample_size(draws)
    assert 0 < ess <= 500


def test_rhat_zero_variance():
    draws = np.zeros((4, 100))
    assert math.isnan(split_rhat(draws))
    assert math.isnan(effective_sample_size(draws))


def test_diagnostics_iid_chains():
    """Independent normal chains: R-hat near 1, 0 < ESS <= S*k"""
    draws = np.asarray(jax.random.normal(jax.random.PRNGKey(3), (4, 1000)))
    rhat = split_rhat(draws)
    ess = effective_sample_size(draws)
    print(f"R-hat: {rhat:.4f}, ESS: {ess:.1f}")
    assert rhat < 1.05
    assert 0 < ess <= 4000


def test_rhat_detects_disagreement():
    draws = np.array(jax.random.normal(jax.random.PRNGKey(3), (4, 1000)))
    draws[0] += 5.0
    assert split_rhat(draws) > 1.1


def test_nuts_coinflip_posterior():
    """NUTS on N=100, y=70 reproduces the exact Beta(72, 32) posterior"""
    print("=" * 70)
    print("Testing NUTS on the coinflip posterior")
    print("=" * 70)

    problem = CoinflipProblem(100, 70)
    density = TransformedDensity(gen_coinflip_posterior(problem))
    config = SamplerConfig(num_samples=1000, num_warmup=500, num_chains=4)
    chains = sample_chains(jax.random.PRNGKey(1), density, config)

    assert len(chains) == 4
    for chain in chains:
        assert chain.position.shape == (1000, 1)
        assert chain.step_size > 0
        assert 0.0 < compute_accept_rate(chain) <= 1.0
        assert int(jnp.max(chain.tree_depth)) <= config.max_num_doublings

    diagnostics = diagnose(chains)
    summary = summarize(pool_samples(chains))
    exact_mean, exact_sd = beta_moments(*conjugate_posterior(problem))

    print(f"NUTS mean: {summary.mean:.4f}, exact: {exact_mean:.4f}")
    print(f"NUTS sd  : {summary.sd:.4f}, exact: {exact_sd:.4f}")
    print(f"R-hat: {diagnostics.rhat:.4f}, ESS: {diagnostics.ess:.1f}")

    assert summary.num_draws == 4000
    assert abs(summary.mean - 0.7) < 0.05
    assert abs(summary.mean - exact_mean) < 0.01
    assert abs(summary.sd - exact_sd) < 0.005
    assert diagnostics.rhat < 1.05
    assert 0 < diagnostics.ess <= 4000
    assert diagnostics.num_divergent == 0
    print("\n✓ NUTS test PASSED")


def test_sampler_rejects_nonfinite_density():
    """NaN log-density above p=0.72 is a divergent, rejected transition, not a crash"""
    base = gen_coinflip_posterior(CoinflipProblem(100, 70))

    def cut_target(p):
        return jnp.where(p > 0.72, jnp.nan, base(p))

    density = TransformedDensity(cut_target)
    config = SamplerConfig(num_samples=300, num_warmup=300, num_chains=2, init_radius=0.5)
    chains = sample_chains(jax.random.PRNGKey(4), density, config)

    diagnostics = diagnose(chains)
    pool = pool_samples(chains)
    print(f"divergent: {diagnostics.num_divergent}, max p: {pool.max():.5f}")
    assert len(chains) == 2
    assert diagnostics.num_divergent > 0, "instability went unreported!"
    assert pool.max() <= 0.72


def test_sampler_raising_density_fails_every_chain():
    """A density that raises is fatal for each chain, reported together"""
    def broken_target(p):
        raise RuntimeError("density failed")

    density = TransformedDensity(broken_target)
    with pytest.raises(SamplingError) as info:
        sample_chains(jax.random.PRNGKey(0), density, FAST)
    assert sorted(info.value.failures) == list(range(FAST.num_chains))
    assert all(isinstance(exc, RuntimeError) for exc in info.value.failures.values())
    assert info.value.results == [None] * FAST.num_chains


def test_chains_sequential_matches_parallel():
    """Chain streams come from the key alone, not from scheduling"""
    density = TransformedDensity(gen_coinflip_posterior(CoinflipProblem(20, 4)))
    parallel = sample_chains(jax.random.PRNGKey(5), density, FAST)
    sequential = sample_chains(jax.random.PRNGKey(5), density, FAST._replace(parallel=False))
    assert np.allclose(stack_draws(parallel), stack_draws(sequential))


def test_pool_does_not_mutate():
    density = TransformedDensity(gen_coinflip_posterior(CoinflipProblem(20, 4)))
    chains = sample_chains(jax.random.PRNGKey(2), density, FAST)
    before = stack_draws(chains)
    pool = pool_samples(chains)
    diagnose(chains)
    assert np.array_equal(before, stack_draws(chains))
    assert pool.shape == (2 * FAST.num_samples,)
    assert bool(np.all((pool > 0) & (pool < 1)))


# ============================================================================
# Summary and pipeline
# ============================================================================

def test_report_idempotent():
    pool = np.asarray(jax.random.beta(jax.random.PRNGKey(0), 72.0, 32.0, (4000,)))
    first = format_report(summarize(pool))
    second = format_report(summarize(pool))
    assert first == second
    lines = first.splitlines()
    assert len(lines) == 2
    assert lines[0].startswith("posterior mean: ")
    assert lines[1].startswith("posterior sd: ")
    assert format_report(summarize(np.array([0.25, 0.75]))) == \
        "posterior mean: 0.5\nposterior sd: 0.35"


def test_summarize_empty_pool():
    with pytest.raises(InvalidParameterError):
        summarize(np.array([]))


def test_pipeline_end_to_end():
    config = PipelineConfig(n_flips=100, p_true=0.7, seed=0, sampler=FAST)
    result = run_pipeline(config)
    exact_mean, _ = beta_moments(*conjugate_posterior(result.problem))
    assert result.flips.shape == (100,)
    assert result.problem.y == int(jnp.sum(result.flips))
    assert len(result.chains) == FAST.num_chains
    assert abs(result.summary.mean - exact_mean) < 0.02


def test_pipeline_stage_attribution():
    cases = [
        (PipelineConfig(n_flips=0, sampler=FAST), "simulation", InvalidParameterError),
        (PipelineConfig(p_true=1.5, sampler=FAST), "simulation", InvalidParameterError),
        (PipelineConfig(alpha=-1.0, sampler=FAST), "density", InvalidParameterError),
        (PipelineConfig(sampler=FAST._replace(num_chains=0)), "sampling", InvalidParameterError),
        (PipelineConfig(sampler=FAST, rhat_threshold=0.5, strict=True), "diagnostics",
         ConvergenceError),
    ]
    for config, stage, cause in cases:
        with pytest.raises(StageError) as info:
            run_pipeline(config)
        assert info.value.stage == stage
        assert isinstance(info.value.cause, cause)


def test_non_strict_summarizes_anyway():
    result = run_pipeline(PipelineConfig(sampler=FAST, rhat_threshold=0.5))
    assert not result.diagnostics.converged
    assert result.summary.num_draws == FAST.num_chains * FAST.num_samples


def test_cli(capsys, tmp_path):
    args = ["--n-flips", "50", "--num-samples", "100", "--num-warmup", "100",
            "--num-chains", "2", "--plot", str(tmp_path / "post.png"),
            "--plot-prior", str(tmp_path / "prior.png")]
    assert main(args) == 0
    out = capsys.readouterr().out.splitlines()
    assert out[0].startswith("posterior mean: ")
    assert out[1].startswith("posterior sd: ")
    assert (tmp_path / "post.png").exists()
    assert (tmp_path / "prior.png").exists()

    assert main(["--p", "1.5"]) == 1


def test_cli_sampler_flags():
    args = parse_args(["--max-num-doublings", "6", "--target-accept", "0.9",
                       "--init-radius", "1.5", "--sequential"])
    sampler = config_from_args(args).sampler
    assert sampler.max_num_doublings == 6
    assert sampler.target_acceptance_rate == 0.9
    assert sampler.init_radius == 1.5
    assert not sampler.parallel
    assert config_from_args(parse_args([])).sampler == SamplerConfig()


def test_plots():
    fig = plot_prior(2.0, 2.0)
    assert len(fig.axes) == 1
    density = TransformedDensity(gen_coinflip_posterior(CoinflipProblem(30, 12)))
    chains = sample_chains(jax.random.PRNGKey(0), density, FAST)
    fig = plot_posterior(chains, CoinflipProblem(30, 12))
    assert len(fig.axes) == 2


if __name__ == "__main__":
    # Check configuration
    print("JAX Configuration:")
    print(f"64-bit precision enabled: {jax.config.jax_enable_x64}")
    print()

    # Run tests
    test_posterior_gradient()
    test_transform_round_trip()
    test_diagnostics_iid_chains()
    test_nuts_coinflip_posterior()

    print("\n" + "=" * 70)
    print("All tests PASSED! ✓")
    print("=" * 70)
