"""
Description:
    End-to-end coinflip inference: simulate -> posterior -> NUTS -> diagnostics.
    USE THE CORRECT ENVIRONMENT:  CoinHMC

Author: John Gallagher
Created: 2026-10-19
Last Modified: 2026-10-19
Version: 0.1
"""
import argparse
import logging
import sys
from contextlib import contextmanager
from typing import Optional, Sequence

import jax
import jax.random as jr

from datatypes import (
    CoinflipProblem, PipelineConfig, PipelineResult, SamplerConfig
)
from errors import ConvergenceError, StageError
from metrics import diagnose, format_diagnostics, format_report, pool_samples, summarize
from sampler import sample_chains
from simulate import simulate_flips
from target import gen_coinflip_logit_posterior, gen_coinflip_posterior
from transform import TransformedDensity

jax.config.update("jax_enable_x64", True)

logger = logging.getLogger(__name__)

def setup_logging(level: int = logging.INFO) -> None:
    root = logging.getLogger()
    root.setLevel(level)
    if not root.handlers:
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(
            logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        )
        root.addHandler(console_handler)

@contextmanager
def stage(name: str):
    """Attribute any exception raised inside to pipeline stage `name`"""
    logger.info("stage: %s", name)
    try:
        yield
    except StageError:
        raise
    except Exception as exc:
        logger.error("%s stage failed: %s", name, exc)
        raise StageError(name, exc) from exc

def run_pipeline(config: PipelineConfig = PipelineConfig()) -> PipelineResult:
    """
    Run all stages.

    Raises:
        StageError: with .stage one of simulation, density, sampling, diagnostics
    """
    key = jr.PRNGKey(config.seed)
    data_key, sample_key = jr.split(key)

    with stage("simulation"):
        flips = simulate_flips(data_key, config.n_flips, config.p_true)

    with stage("density"):
        problem = CoinflipProblem.from_flips(flips)
        logger.info("observed %d heads in %d flips", problem.y, problem.N)
        target = gen_coinflip_posterior(problem, config.alpha, config.beta)
        logdensity = TransformedDensity(
            target,
            logit_target=gen_coinflip_logit_posterior(problem, config.alpha, config.beta),
        )

    with stage("sampling"):
        chains = sample_chains(sample_key, logdensity, config.sampler)

    with stage("diagnostics"):
        diagnostics = diagnose(chains, config.rhat_threshold)
        logger.info(format_diagnostics(diagnostics))
        if not diagnostics.converged:
            if config.strict:
                raise ConvergenceError(diagnostics.rhat, config.rhat_threshold)
            logger.warning("split R-hat %.4f above %.2f, summary may be unreliable",
                           diagnostics.rhat, config.rhat_threshold)
        if diagnostics.num_divergent:
            logger.warning("%d divergent transitions", diagnostics.num_divergent)
        pool = pool_samples(chains, logdensity.transform)
        summary = summarize(pool)

    return PipelineResult(
        flips=flips,
        problem=problem,
        chains=chains,
        diagnostics=diagnostics,
        pool=pool,
        summary=summary,
    )

def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    defaults = PipelineConfig()
    sampler_defaults = SamplerConfig()
    parser = argparse.ArgumentParser(
        description="Bayesian inference of a coin's bias with NUTS"
    )
    parser.add_argument("--n-flips", type=int, default=defaults.n_flips)
    parser.add_argument("--p", type=float, default=defaults.p_true,
                        help="true probability of heads used to simulate data")
    parser.add_argument("--seed", type=int, default=defaults.seed)
    parser.add_argument("--alpha", type=float, default=defaults.alpha)
    parser.add_argument("--beta", type=float, default=defaults.beta)
    parser.add_argument("--num-samples", type=int, default=sampler_defaults.num_samples)
    parser.add_argument("--num-warmup", type=int, default=sampler_defaults.num_warmup)
    parser.add_argument("--num-chains", type=int, default=sampler_defaults.num_chains)
    parser.add_argument("--max-num-doublings", type=int,
                        default=sampler_defaults.max_num_doublings,
                        help="NUTS tree depth bound")
    parser.add_argument("--target-accept", type=float,
                        default=sampler_defaults.target_acceptance_rate)
    parser.add_argument("--init-radius", type=float, default=sampler_defaults.init_radius,
                        help="chains start uniformly in [-r, r] on the logit scale")
    parser.add_argument("--rhat-threshold", type=float, default=defaults.rhat_threshold)
    parser.add_argument("--sequential", action="store_true",
                        help="run chains one after another instead of in threads")
    parser.add_argument("--strict", action="store_true",
                        help="abort when chains have not converged")
    parser.add_argument("--plot", metavar="PATH",
                        help="save trace and posterior histogram to PATH")
    parser.add_argument("--plot-prior", metavar="PATH",
                        help="save the prior density to PATH")
    parser.add_argument("--verbose", "-v", action="store_true")
    return parser.parse_args(argv)

def config_from_args(args: argparse.Namespace) -> PipelineConfig:
    return PipelineConfig(
        n_flips=args.n_flips,
        p_true=args.p,
        seed=args.seed,
        alpha=args.alpha,
        beta=args.beta,
        sampler=SamplerConfig(
            num_samples=args.num_samples,
            num_warmup=args.num_warmup,
            num_chains=args.num_chains,
            target_acceptance_rate=args.target_accept,
            max_num_doublings=args.max_num_doublings,
            init_radius=args.init_radius,
            parallel=not args.sequential,
        ),
        rhat_threshold=args.rhat_threshold,
        strict=args.strict,
    )

def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    setup_logging(logging.DEBUG if args.verbose else logging.INFO)
    config = config_from_args(args)

    try:
        result = run_pipeline(config)
    except StageError as exc:
        logger.error("run aborted in %s stage", exc.stage)
        return 1

    print(format_report(result.summary))

    if args.plot_prior:
        from plots import plot_prior
        plot_prior(config.alpha, config.beta).savefig(args.plot_prior, dpi=150)
        logger.info("saved prior to %s", args.plot_prior)
    if args.plot:
        from plots import plot_posterior
        plot_posterior(result.chains, result.problem, config.alpha, config.beta,
                       save_path=args.plot)
        logger.info("saved figure to %s", args.plot)
    return 0

if __name__ == "__main__":
    sys.exit(main())
