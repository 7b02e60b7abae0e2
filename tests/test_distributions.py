"""
Test cases for rvjax distributions.

These tests validate every continuous distribution:
- Log-densities against TensorFlow Probability
- The change-of-variables correction carried by each `param`
- Generators, transforms and batched fitting
"""

import jax
import jax.numpy as jnp
import jax.random as jrand
import pytest
import tensorflow_probability.substrates.jax as tfp

from rvjax.context import Context
from rvjax.core import UnsupportedOperationError
from rvjax.distributions import (
    Cauchy,
    Exponential,
    Laplace,
    LogNormal,
    Normal,
    StudentsT,
    Uniform,
    non_negative,
    standard_exponential,
    unbounded,
)
from rvjax.real import Evaluator, Variable, evaluate

tfd = tfp.distributions


# =============================================================================
# TEST FIXTURES AND HELPERS
# =============================================================================

CASES = [
    pytest.param(Normal(1.0, 2.0), tfd.Normal(1.0, 2.0), id="normal"),
    pytest.param(Cauchy(0.5, 1.5), tfd.Cauchy(0.5, 1.5), id="cauchy"),
    pytest.param(LogNormal(0.2, 0.7), tfd.LogNormal(0.2, 0.7), id="log_normal"),
    pytest.param(Exponential(2.0), tfd.Exponential(2.0), id="exponential"),
    pytest.param(StudentsT(3.0, 0.5, 1.2), tfd.StudentT(3.0, 0.5, 1.2), id="students_t"),
    pytest.param(Laplace(-1.0, 0.5), tfd.Laplace(-1.0, 0.5), id="laplace"),
    pytest.param(Uniform(-1.0, 3.0), tfd.Uniform(-1.0, 3.0), id="uniform"),
    pytest.param(standard_exponential, tfd.Exponential(1.0), id="standard_exponential"),
]

UNCONSTRAINED_POINTS = [-1.3, 0.0, 0.8]


def unconstrained(rv):
    """The payload and density of a single-parameter program as functions of
    its unconstrained coordinate."""
    (variable,) = Context(rv.density, rv.value).variables

    def value(z):
        return Evaluator({variable.id: z}).evaluate(rv.value)

    def density(z):
        return Evaluator({variable.id: z}).evaluate(rv.density)

    return value, density


# =============================================================================
# LOG-DENSITIES
# =============================================================================


@pytest.mark.distributions
@pytest.mark.unit
@pytest.mark.fast
@pytest.mark.parametrize("dist, tfp_dist", CASES)
def test_log_density_matches_tfp(dist, tfp_dist, standard_tolerance):
    """Log-densities at in-support values agree with TFP."""
    samples = tfp_dist.sample(5, seed=jrand.PRNGKey(0))
    for sample in samples:
        rvjax_logprob = evaluate(dist.log_density(sample))
        tfp_logprob = tfp_dist.log_prob(sample)
        assert jnp.allclose(
            rvjax_logprob, tfp_logprob, atol=standard_tolerance, rtol=1e-4
        ), f"Log probabilities differ for sample {sample}: rvjax={rvjax_logprob}, TFP={tfp_logprob}"


@pytest.mark.distributions
@pytest.mark.unit
@pytest.mark.fast
def test_log_density_outside_support():
    assert evaluate(Exponential(1.0).log_density(-1.0)) == -jnp.inf
    assert evaluate(standard_exponential.log_density(-0.1)) == -jnp.inf
    assert evaluate(Uniform(0.0, 1.0).log_density(2.0)) == -jnp.inf
    assert evaluate(Uniform(0.0, 1.0).log_density(-0.5)) == -jnp.inf
    assert evaluate(LogNormal(0.0, 1.0).log_density(-1.0)) == -jnp.inf
    assert evaluate(non_negative.log_density(-1.0)) == -jnp.inf
    assert evaluate(non_negative.log_density(1.0)) == 0.0


@pytest.mark.distributions
@pytest.mark.unit
@pytest.mark.fast
def test_normal_log_densities_matches_elementwise_sum(standard_tolerance):
    dist = Normal(0.3, 1.7)
    observations = [0.1, -2.0, 1.4, 3.3]

    vectorized = evaluate(dist.log_densities(observations))
    elementwise = sum(evaluate(dist.log_density(t)) for t in observations)
    expected = jnp.sum(tfd.Normal(0.3, 1.7).log_prob(jnp.array(observations)))

    assert jnp.allclose(vectorized, elementwise, atol=standard_tolerance)
    assert jnp.allclose(vectorized, expected, atol=standard_tolerance)


@pytest.mark.distributions
@pytest.mark.unit
@pytest.mark.fast
def test_default_log_densities_is_elementwise_sum(standard_tolerance):
    dist = Laplace(0.0, 2.0)
    observations = [0.5, -1.0, 4.0]
    expected = jnp.sum(tfd.Laplace(0.0, 2.0).log_prob(jnp.array(observations)))
    assert jnp.allclose(
        evaluate(dist.log_densities(observations)), expected, atol=standard_tolerance
    )


@pytest.mark.distributions
@pytest.mark.unit
@pytest.mark.fast
def test_log_density_with_symbolic_parameters(standard_tolerance):
    mean = Variable()
    lp = Normal(mean, 2.0).log_density(1.0)
    assert jnp.allclose(
        evaluate(lp, {mean: 0.5}),
        tfd.Normal(0.5, 2.0).log_prob(1.0),
        atol=standard_tolerance,
    )


# =============================================================================
# PARAMETERIZATIONS
# =============================================================================


@pytest.mark.distributions
@pytest.mark.unit
@pytest.mark.fast
@pytest.mark.parametrize("dist, tfp_dist", CASES)
def test_param_carries_change_of_variables(dist, tfp_dist):
    """density(z) = log p(y(z)) + log |dy/dz| for the value y(z) of `param`."""
    value, density = unconstrained(dist.param)
    for z in UNCONSTRAINED_POINTS:
        z = jnp.asarray(z)
        y = value(z)
        expected = tfp_dist.log_prob(y) + jnp.log(jnp.abs(jax.grad(value)(z)))
        assert jnp.allclose(density(z), expected, atol=1e-3, rtol=1e-4), (
            f"z={z}: density={density(z)}, expected={expected}"
        )


@pytest.mark.distributions
@pytest.mark.unit
@pytest.mark.fast
def test_normal_param_density_is_standard_normal(standard_tolerance):
    rv = Normal(0.0, 1.0).param
    value, density = unconstrained(rv)
    assert jnp.allclose(value(0.7), 0.7)
    assert jnp.allclose(
        density(0.7), tfd.Normal(0.0, 1.0).log_prob(0.7), atol=standard_tolerance
    )


@pytest.mark.distributions
@pytest.mark.unit
@pytest.mark.fast
def test_params_are_fresh():
    dist = Normal(0.0, 1.0)
    a = Context(dist.param.density).variables
    b = Context(dist.param.density).variables
    assert len(a) == len(b) == 1
    assert a[0] is not b[0]


@pytest.mark.distributions
@pytest.mark.unit
@pytest.mark.fast
def test_unbounded_and_non_negative_params():
    value, density = unconstrained(unbounded.param)
    assert jnp.allclose(value(1.5), 1.5)
    assert density(1.5) == 0.0

    value, density = unconstrained(non_negative.param)
    assert jnp.allclose(value(1.5), jnp.exp(1.5))
    # log |d e^x / dx| = x
    assert jnp.allclose(density(1.5), 1.5)


@pytest.mark.distributions
@pytest.mark.unit
@pytest.mark.fast
def test_standard_exponential_induces_exponential_law():
    """Integrating the density over the unconstrained coordinate reproduces
    the Exponential(1) CDF."""
    _, density = unconstrained(standard_exponential.param)
    zs = jnp.linspace(-15.0, 4.0, 40001)
    dz = zs[1] - zs[0]
    probs = jnp.exp(jax.vmap(density)(zs))

    assert jnp.allclose(jnp.sum(probs) * dz, 1.0, atol=1e-3)
    for c in [0.5, 1.0, 2.0]:
        cdf = jnp.sum(jnp.where(zs <= jnp.log(c), probs, 0.0)) * dz
        assert jnp.allclose(cdf, 1.0 - jnp.exp(-c), atol=2e-3), f"CDF mismatch at {c}"


@pytest.mark.distributions
@pytest.mark.unit
@pytest.mark.fast
def test_uniform_param_stays_in_bounds():
    value, density = unconstrained(Uniform(2.0, 5.0).param)
    for z in [-104.0, -20.0, -8.0, -1.0, 0.0, 1.0, 8.0, 17.0, 20.0]:
        y = value(z)
        assert 2.0 <= y <= 5.0
        assert jnp.isfinite(density(z))


@pytest.mark.distributions
@pytest.mark.unit
@pytest.mark.fast
def test_uniform_param_density_in_the_tails():
    """Far from zero the logistic Jacobian decays like exp(-|z|) without
    collapsing to -inf."""
    _, density = unconstrained(Uniform(0.0, 1.0).param)
    for z in [-104.0, -20.0, 17.0, 20.0]:
        z = jnp.asarray(z)
        assert jnp.allclose(density(z), -jnp.abs(z), atol=1e-3)
        assert jnp.isfinite(jax.grad(density)(z))


@pytest.mark.distributions
@pytest.mark.unit
@pytest.mark.fast
def test_exponential_param_with_latent_rate():
    """The scale Jacobian keeps the joint density correct when the rate is latent."""
    rate = Variable()
    value, _ = unconstrained(Exponential(2.0).param)
    rv = Exponential(rate).param
    (z_var,) = [v for v in Context(rv.density, rv.value).variables if v is not rate]
    lp = Evaluator({z_var.id: 0.3, rate.id: 2.0}).evaluate(rv.density)
    expected = tfd.Exponential(2.0).log_prob(value(0.3)) + jnp.log(value(0.3))
    assert jnp.allclose(lp, expected, atol=1e-4)


# =============================================================================
# TRANSFORMS
# =============================================================================


@pytest.mark.distributions
@pytest.mark.unit
@pytest.mark.fast
def test_scaled_and_translated_normal(standard_tolerance):
    dist = Normal(0.0, 1.0).scaled(2.0).translated(1.0)
    for t in [-1.0, 0.0, 2.5]:
        assert jnp.allclose(
            evaluate(dist.log_density(t)),
            tfd.Normal(1.0, 2.0).log_prob(t),
            atol=standard_tolerance,
        )


@pytest.mark.distributions
@pytest.mark.unit
@pytest.mark.fast
def test_exp_of_normal_is_log_normal(standard_tolerance):
    dist = Normal(0.2, 0.7).exp()
    for t in [0.3, 1.0, 4.0]:
        assert jnp.allclose(
            evaluate(dist.log_density(t)),
            tfd.LogNormal(0.2, 0.7).log_prob(t),
            atol=standard_tolerance,
        )

    value, density = unconstrained(dist.param)
    assert jnp.allclose(value(0.1), jnp.exp(0.3), atol=standard_tolerance)
    assert jnp.allclose(
        density(0.1), tfd.Normal(0.2, 0.7).log_prob(0.3), atol=standard_tolerance
    )


@pytest.mark.distributions
@pytest.mark.unit
@pytest.mark.fast
def test_transformed_generator(key):
    draw = Normal(0.0, 1e-3).translated(10.0).generator.get(key)
    assert jnp.allclose(draw, 10.0, atol=0.1)


# =============================================================================
# GENERATORS
# =============================================================================


@pytest.mark.distributions
@pytest.mark.unit
@pytest.mark.fast
@pytest.mark.parametrize("dist, tfp_dist", CASES)
def test_generator_draws_in_support(dist, tfp_dist, key):
    draws = dist.generator.repeat(20).get(key)
    assert len(draws) == 20
    for draw in draws:
        assert jnp.isfinite(tfp_dist.log_prob(draw))


@pytest.mark.distributions
@pytest.mark.unit
@pytest.mark.fast
def test_generator_evaluates_symbolic_parameters(key):
    mean = Variable()
    generator = Normal(mean, 1e-3).generator
    draw = generator.get(key, Evaluator({mean.id: 5.0}))
    assert jnp.allclose(draw, 5.0, atol=0.1)


@pytest.mark.distributions
@pytest.mark.unit
@pytest.mark.fast
def test_improper_priors_have_no_generator():
    with pytest.raises(UnsupportedOperationError):
        unbounded.generator
    with pytest.raises(NotImplementedError):
        non_negative.generator


# =============================================================================
# FITTING
# =============================================================================


@pytest.mark.distributions
@pytest.mark.unit
@pytest.mark.fast
def test_fit_payload_is_distribution(standard_tolerance):
    dist = Cauchy(0.0, 1.0)
    rv = dist.fit([0.5, 2.0])
    assert rv.value is dist
    assert jnp.allclose(
        evaluate(rv.density),
        jnp.sum(tfd.Cauchy(0.0, 1.0).log_prob(jnp.array([0.5, 2.0]))),
        atol=standard_tolerance,
    )


@pytest.mark.distributions
@pytest.mark.unit
@pytest.mark.fast
def test_fit_batched_binds_columns(standard_tolerance):
    data = jnp.array([0.1, 0.4, -0.3, 1.2])
    rv = Normal(0.0, 1.0).fit_batched(data, 2)
    (batches,) = rv.batches
    assert batches.num_batches == 2

    context = Context(rv.density)
    full = context.log_density(jnp.zeros((0,)))
    first = context.log_density(jnp.zeros((0,)), batches.bindings(0))
    log_probs = tfd.Normal(0.0, 1.0).log_prob(data)

    assert jnp.allclose(full, jnp.sum(log_probs), atol=standard_tolerance)
    assert jnp.allclose(first, jnp.sum(log_probs[:2]), atol=standard_tolerance)


@pytest.mark.distributions
@pytest.mark.unit
@pytest.mark.fast
def test_injection_transform_matches_combinator(standard_tolerance):
    from rvjax.injection import Scale

    via_injection = Scale(3.0).transform(Laplace(0.0, 1.0))
    via_combinator = Laplace(0.0, 1.0).scaled(3.0)
    for t in [-2.0, 0.5]:
        assert jnp.allclose(
            evaluate(via_injection.log_density(t)),
            evaluate(via_combinator.log_density(t)),
            atol=standard_tolerance,
        )
        assert jnp.allclose(
            evaluate(via_injection.log_density(t)),
            tfd.Laplace(0.0, 3.0).log_prob(t),
            atol=standard_tolerance,
        )
