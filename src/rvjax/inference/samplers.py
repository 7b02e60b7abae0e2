"""
MCMC samplers over the unconstrained coordinates of a `Context`.

Samplers see a model only through `Context.log_density`, a function of a
flat `(ndim,)` parameter array. Each sampler supplies a single transition
kernel; `run_chain` adds step-size adaptation during warmup, thinning and
acceptance bookkeeping, and `run_chains` fans independent chains out on a
thread pool and joins them before diagnostics are computed.

References
----------

**Metropolis-Hastings Algorithm:**
- Metropolis, N., Rosenbluth, A. W., Rosenbluth, M. N., Teller, A. H., & Teller, E. (1953).
  "Equation of state calculations by fast computing machines."
  The Journal of Chemical Physics, 21(6), 1087-1092.

**Hamiltonian Monte Carlo:**
- Neal, R. M. (2011). "MCMC using Hamiltonian dynamics."
  Handbook of Markov Chain Monte Carlo, 2(11), 2.
"""

import warnings
from abc import abstractmethod
from concurrent.futures import ThreadPoolExecutor

import jax
import jax.numpy as jnp
import jax.random as jrand

from rvjax.core import (
    Any,
    Array,
    FloatArray,
    PRNGKey,
    Pytree,
)

DEFAULT_WARMUP_ITERATIONS = 10000
DEFAULT_ITERATIONS = 10000


class Sampler(Pytree):
    @abstractmethod
    def kernel(self, key, q, log_density, step_size):
        """One transition from `q`.

        Returns:
            (new position, acceptance probability, accepted flag)
        """


def _metropolis(key, log_ratio, proposal, q):
    log_ratio = jnp.where(jnp.isnan(log_ratio), -jnp.inf, log_ratio)
    accept_prob = jnp.minimum(1.0, jnp.exp(log_ratio))
    accepted = jnp.log(jrand.uniform(key)) < log_ratio
    return jnp.where(accepted, proposal, q), accept_prob, accepted


@Pytree.dataclass
class MH(Sampler):
    """Random-walk Metropolis with a Gaussian proposal of width `step_size`."""

    initial_step_size: float = Pytree.static(default=0.5)
    target_acceptance: float = Pytree.static(default=0.3)

    def kernel(self, key, q, log_density, step_size):
        proposal_key, accept_key = jrand.split(key)
        proposal = q + step_size * jrand.normal(proposal_key, q.shape)
        log_ratio = log_density(proposal) - log_density(q)
        return _metropolis(accept_key, log_ratio, proposal, q)


@Pytree.dataclass
class HMC(Sampler):
    """Hamiltonian Monte Carlo with a fixed number of leapfrog steps."""

    n_leapfrog: int = Pytree.static(default=5)
    initial_step_size: float = Pytree.static(default=0.1)
    target_acceptance: float = Pytree.static(default=0.65)

    def leapfrog(self, q, p, log_density, step_size):
        grad_fn = jax.grad(log_density)

        p = p + 0.5 * step_size * grad_fn(q)

        def body_fn(carry, _):
            q, p = carry
            q = q + step_size * p
            p = p + step_size * grad_fn(q)
            return (q, p), None

        (q, p), _ = jax.lax.scan(body_fn, (q, p), None, length=self.n_leapfrog - 1)

        q = q + step_size * p
        p = p + 0.5 * step_size * grad_fn(q)
        return q, p

    def kernel(self, key, q, log_density, step_size):
        momentum_key, accept_key = jrand.split(key)
        p = jrand.normal(momentum_key, q.shape)
        q_new, p_new = self.leapfrog(q, p, log_density, step_size)
        h_current = -log_density(q) + 0.5 * jnp.dot(p, p)
        h_proposal = -log_density(q_new) + 0.5 * jnp.dot(p_new, p_new)
        return _metropolis(accept_key, h_current - h_proposal, q_new, q)


def default_sampler() -> Sampler:
    return HMC(n_leapfrog=5)


@Pytree.dataclass
class ChainResult(Pytree):
    """Raw output of one chain."""

    samples: Array  # (iterations, ndim)
    accepts: Array  # (iterations,)
    acceptance_rate: FloatArray
    step_size: FloatArray


@Pytree.dataclass
class Diagnostics(Pytree):
    """Convergence diagnostics for one parameter across chains."""

    r_hat: FloatArray
    effective_sample_size: FloatArray


def run_chain(
    key: PRNGKey,
    context: Any,
    sampler: Sampler,
    warmup_iterations: int,
    iterations: int,
    keep_every: int = 1,
) -> ChainResult:
    """
    Run one chain in the unconstrained space of `context`.

    During warmup the log step size follows a Robbins-Monro update towards
    the sampler's `target_acceptance`; it is frozen afterwards.

    Args:
        key: PRNG key for this chain
        context: Compiled model density
        sampler: Transition kernel
        warmup_iterations: Adaptation steps, discarded
        iterations: Number of kept samples
        keep_every: Thinning interval

    Returns:
        ChainResult with `samples` of shape (iterations, ndim)
    """
    log_density = context.log_density
    init_key, warmup_key, sample_key = jrand.split(key, 3)
    q0 = jrand.uniform(init_key, (context.ndim,), minval=-2.0, maxval=2.0)
    if not jnp.isfinite(log_density(q0)):
        warnings.warn(
            "Chain starts from a point with non-finite log density; "
            "proposals may never be accepted."
        )

    log_step = jnp.log(jnp.asarray(sampler.initial_step_size))
    q = q0

    if warmup_iterations > 0:

        def warmup_step(carry, step_key):
            q, log_step, t = carry
            q, accept_prob, _ = sampler.kernel(
                step_key, q, log_density, jnp.exp(log_step)
            )
            log_step = log_step + (accept_prob - sampler.target_acceptance) / jnp.sqrt(
                t
            )
            return (q, log_step, t + 1.0), accept_prob

        (q, log_step, _), _ = jax.lax.scan(
            warmup_step,
            (q, log_step, 1.0),
            jrand.split(warmup_key, warmup_iterations),
        )

    step_size = jnp.exp(log_step)

    def sample_step(q, step_key):
        q, _, accepted = sampler.kernel(step_key, q, log_density, step_size)
        return q, (q, accepted)

    _, (qs, accepts) = jax.lax.scan(
        sample_step, q, jrand.split(sample_key, iterations * keep_every)
    )
    qs = qs[keep_every - 1 :: keep_every]
    accepts = accepts[keep_every - 1 :: keep_every]

    acceptance_rate = jnp.mean(accepts)
    if iterations > 0 and acceptance_rate == 0.0:
        warnings.warn("Chain accepted no proposals; consider a smaller step size.")

    return ChainResult(
        samples=qs,
        accepts=accepts,
        acceptance_rate=acceptance_rate,
        step_size=step_size,
    )


def run_chains(
    key: PRNGKey,
    context: Any,
    sampler: Sampler,
    chains: int,
    warmup_iterations: int,
    iterations: int,
    parallel: bool = True,
    keep_every: int = 1,
) -> list[ChainResult]:
    """Run independent chains, each with its own key, and wait for all of them."""
    keys = jrand.split(key, chains)

    def run(chain_key):
        return run_chain(
            chain_key, context, sampler, warmup_iterations, iterations, keep_every
        )

    if parallel and chains > 1:
        with ThreadPoolExecutor(max_workers=chains) as pool:
            futures = [pool.submit(run, k) for k in keys]
            return [f.result() for f in futures]
    return [run(k) for k in keys]


def compute_rhat(samples: jnp.ndarray) -> FloatArray:
    """Gelman-Rubin statistic for samples of shape (n_chains, n_samples).

    The pooled variance estimate is compared with the mean within-chain
    variance; chains that agree give a value near 1. With a single chain the
    statistic is undefined and NaN is returned.
    """
    n_chains, n = samples.shape
    if n_chains < 2:
        return jnp.asarray(jnp.nan)

    within = samples.var(axis=1, ddof=1).mean()
    spread_of_means = samples.mean(axis=1).var(ddof=1)
    pooled = within * (n - 1) / n + spread_of_means
    return jnp.sqrt(pooled / within)


def compute_ess(samples: jnp.ndarray) -> FloatArray:
    """
    Effective sample size from the lag-1 autocorrelation of each chain.

    Args:
        samples: Array of shape (n_chains, n_samples) containing MCMC samples

    Returns:
        Effective sample size estimate over all chains
    """
    n_chains, n_samples = samples.shape

    def lag1(chain):
        return jnp.corrcoef(chain[:-1], chain[1:])[0, 1]

    rho = jnp.mean(jax.vmap(lag1)(samples))
    # Constant chains have undefined correlation; treat them as uncorrelated.
    rho = jnp.clip(jnp.nan_to_num(rho), 0.0, 0.99)

    return n_chains * n_samples / (1 + 2 * rho)


def diagnostics(samples: jnp.ndarray) -> list[Diagnostics]:
    """Per-parameter diagnostics for samples of shape (n_chains, n_samples, ndim)."""
    return [
        Diagnostics(
            r_hat=compute_rhat(samples[:, :, i]),
            effective_sample_size=compute_ess(samples[:, :, i]),
        )
        for i in range(samples.shape[2])
    ]
