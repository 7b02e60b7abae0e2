"""Continuous distributions and their unconstrained parameterizations.

Every `Continuous` distribution can produce a `RandomVariable` over a value
in its support (`param`). The value is obtained by transforming a fresh
unconstrained `Variable`, and the program's density is the log-density of
the value expressed in the unconstrained coordinate, including the
change-of-variables correction for the transform used. Samplers move in the
unconstrained coordinate, so without that correction the density they see
would be wrong.

Parameterizations:

| Distribution        | Base                | Transform                  |
|---------------------|---------------------|----------------------------|
| Unbounded           |                     | identity                   |
| NonNegative         | Unbounded           | exp                        |
| StandardExponential | NonNegative         | identity                   |
| Normal              | Unbounded           | translate by mean          |
| Cauchy              | Unbounded           | translate by x0            |
| LogNormal           | Normal              | exp                        |
| Exponential         | NonNegative         | scale by 1 / rate          |
| Uniform             | Unbounded           | logistic, then affine      |
| Laplace             | Unbounded           | translate by mean          |
| StudentsT           | Unbounded           | translate by mu            |

Log-densities are normalized, so they agree with TensorFlow Probability's
`log_prob`.
"""

import math
from abc import abstractmethod

import jax.numpy as jnp
from tensorflow_probability.substrates import jax as tfp

from rvjax.core import (
    Any,
    ArrayLike,
    Generic,
    Pytree,
    UnsupportedOperationError,
    X,
)
from rvjax.generator import Generator, tfp_generator
from rvjax.injection import Exp, Injection, Scale, Translate
from rvjax.likelihood import Likelihood
from rvjax.random_variable import Batches, RandomVariable
from rvjax.real import Column, Constant, Real, Variable, as_real

tfd = tfp.distributions

RealLike = Real | ArrayLike

_HALF_LOG_2PI = 0.5 * math.log(2.0 * math.pi)

###################
# Log-density math #
###################


def normal_log_density(x: Real, mean: RealLike, stddev: RealLike) -> Real:
    err = (x - mean) / stddev
    return err * err * -0.5 - as_real(stddev).log() - _HALF_LOG_2PI


def cauchy_log_density(x: Real, x0: RealLike, beta: RealLike) -> Real:
    z = (x - x0) / beta
    return -(as_real(beta) * math.pi).log() - (z * z).log1p()


def laplace_log_density(x: Real, mean: RealLike, scale: RealLike) -> Real:
    return -(as_real(scale) * 2.0).log() - (x - mean).abs() / scale


def exponential_log_density(x: Real, rate: RealLike) -> Real:
    return Real.where(
        x >= 0.0, as_real(rate).log() - x * rate, Real.negative_infinity
    )


def students_t_log_density(
    x: Real, nu: RealLike, mu: RealLike, sigma: RealLike
) -> Real:
    nu = as_real(nu)
    z = (x - mu) / sigma
    return (
        ((nu + 1.0) / 2.0).lgamma()
        - (nu / 2.0).lgamma()
        - (nu * math.pi).log() * 0.5
        - as_real(sigma).log()
        - (nu + 1.0) / 2.0 * (z * z / nu).log1p()
    )


#################
# Distributions #
#################


class Distribution(Generic[X], Likelihood[X]):
    """A probability law over realized values of type `X`.

    Distributions hold no sampled state. As a `Likelihood`, a distribution
    fits i.i.d. observations of itself.
    """

    @property
    @abstractmethod
    def generator(self) -> Generator[X]:
        pass

    @abstractmethod
    def log_density(self, t: Any) -> Real:
        pass

    def log_densities(self, observations: Any) -> Real:
        """Joint log-density of i.i.d. observations."""
        return Real.sum_of(self.log_density(t) for t in observations)

    def fit(self, observations: Any) -> RandomVariable["Distribution[X]"]:
        return RandomVariable(self, self.log_densities(observations))


class Continuous(Distribution[float]):
    @property
    @abstractmethod
    def param(self) -> RandomVariable[Real]:
        """A fresh program over a value in this distribution's support."""

    @abstractmethod
    def real_log_density(self, real: Real) -> Real:
        pass

    def log_density(self, t: Any) -> Real:
        return self.real_log_density(Constant(t))

    def fit_batched(
        self, observations: Any, num_batches: int
    ) -> RandomVariable["Continuous"]:
        column = Column(jnp.asarray(observations))
        return RandomVariable(
            self,
            self.real_log_density(column).sum(),
            Batches((column,), num_batches),
        )

    def transformed(self, injection: Injection) -> "Continuous":
        return Transformed(self, injection)

    def scaled(self, a: RealLike) -> "Continuous":
        return self.transformed(Scale(a))

    def translated(self, b: RealLike) -> "Continuous":
        return self.transformed(Translate(b))

    def exp(self) -> "Continuous":
        return self.transformed(Exp())


@Pytree.dataclass
class Transformed(Continuous):
    """`base` pushed through `injection`.

    The unconstrained coordinate and its density are the base's; only the
    payload is mapped, so no further correction is needed for `param`.
    """

    base: Continuous
    injection: Injection

    @property
    def param(self) -> RandomVariable[Real]:
        return self.base.param.map(self.injection.forward)

    def real_log_density(self, real: Real) -> Real:
        return self.base.real_log_density(
            self.injection.backward(real)
        ) + self.injection.log_jacobian(real)

    @property
    def generator(self) -> Generator[Any]:
        base = self.base.generator
        return Generator(lambda key, n: n(self.injection.forward(base.fn(key, n))))


@Pytree.dataclass
class Unbounded(Continuous):
    """A flat prior over the real line."""

    @property
    def param(self) -> RandomVariable[Real]:
        return RandomVariable(Variable())

    def real_log_density(self, real: Real) -> Real:
        return Real.zero

    @property
    def generator(self) -> Generator[Any]:
        raise UnsupportedOperationError("Unbounded is an improper prior.")


unbounded = Unbounded()


@Pytree.dataclass
class NonNegative(Continuous):
    """A flat prior over the non-negative reals."""

    @property
    def param(self) -> RandomVariable[Real]:
        # y = e^x, so the density picks up log |dy/dx| = x.
        return unbounded.param.flat_map(lambda x: RandomVariable(x.exp(), x))

    def real_log_density(self, real: Real) -> Real:
        return Real.where(real >= 0.0, Real.zero, Real.negative_infinity)

    @property
    def generator(self) -> Generator[Any]:
        raise UnsupportedOperationError("NonNegative is an improper prior.")


non_negative = NonNegative()


@Pytree.dataclass
class StandardExponential(Continuous):
    @property
    def param(self) -> RandomVariable[Real]:
        return non_negative.param.flat_map(
            lambda x: RandomVariable(x, self.real_log_density(x))
        )

    def real_log_density(self, real: Real) -> Real:
        return exponential_log_density(real, 1.0)

    @property
    def generator(self) -> Generator[Any]:
        return tfp_generator(tfd.Exponential, 1.0)


standard_exponential = StandardExponential()


@Pytree.dataclass
class Normal(Continuous):
    mean: RealLike
    stddev: RealLike

    @property
    def param(self) -> RandomVariable[Real]:
        def translate(x):
            translated = x + self.mean
            return RandomVariable(translated, self.real_log_density(translated))

        return unbounded.param.flat_map(translate)

    def real_log_density(self, real: Real) -> Real:
        return normal_log_density(real, self.mean, self.stddev)

    def log_densities(self, observations: Any) -> Real:
        data = jnp.asarray(observations)
        err = Constant(data) - self.mean
        stddev = as_real(self.stddev)
        return (
            (err * err).sum() / (stddev * stddev * -2.0)
            - stddev.log() * data.size
            - _HALF_LOG_2PI * data.size
        )

    @property
    def generator(self) -> Generator[Any]:
        return tfp_generator(tfd.Normal, self.mean, self.stddev)


@Pytree.dataclass
class Cauchy(Continuous):
    x0: RealLike
    beta: RealLike

    @property
    def param(self) -> RandomVariable[Real]:
        def translate(x):
            translated = x + self.x0
            return RandomVariable(translated, self.real_log_density(translated))

        return unbounded.param.flat_map(translate)

    def real_log_density(self, real: Real) -> Real:
        return cauchy_log_density(real, self.x0, self.beta)

    @property
    def generator(self) -> Generator[Any]:
        return tfp_generator(tfd.Cauchy, self.x0, self.beta)


@Pytree.dataclass
class LogNormal(Continuous):
    mean: RealLike
    stddev: RealLike

    @property
    def param(self) -> RandomVariable[Real]:
        return Normal(self.mean, self.stddev).param.map(lambda x: x.exp())

    def real_log_density(self, real: Real) -> Real:
        log_real = real.log()
        return Real.where(
            real > 0.0,
            normal_log_density(log_real, self.mean, self.stddev) - log_real,
            Real.negative_infinity,
        )

    @property
    def generator(self) -> Generator[Any]:
        return tfp_generator(tfd.LogNormal, self.mean, self.stddev)


@Pytree.dataclass
class Exponential(Continuous):
    rate: RealLike

    @property
    def param(self) -> RandomVariable[Real]:
        def scale(x):
            scaled = x / self.rate
            # log |d scaled / dx| = -log(rate), on top of NonNegative's own term.
            density = self.real_log_density(scaled) - as_real(self.rate).log()
            return RandomVariable(scaled, density)

        return non_negative.param.flat_map(scale)

    def real_log_density(self, real: Real) -> Real:
        return exponential_log_density(real, self.rate)

    @property
    def generator(self) -> Generator[Any]:
        return tfp_generator(tfd.Exponential, self.rate)


@Pytree.dataclass
class StudentsT(Continuous):
    nu: RealLike
    mu: RealLike
    sigma: RealLike

    @property
    def param(self) -> RandomVariable[Real]:
        def translate(x):
            translated = x + self.mu
            return RandomVariable(translated, self.real_log_density(translated))

        return unbounded.param.flat_map(translate)

    def real_log_density(self, real: Real) -> Real:
        return students_t_log_density(real, self.nu, self.mu, self.sigma)

    @property
    def generator(self) -> Generator[Any]:
        return tfp_generator(tfd.StudentT, self.nu, self.mu, self.sigma)


@Pytree.dataclass
class Laplace(Continuous):
    mean: RealLike
    scale: RealLike

    @property
    def param(self) -> RandomVariable[Real]:
        def translate(x):
            translated = x + self.mean
            return RandomVariable(translated, self.real_log_density(translated))

        return unbounded.param.flat_map(translate)

    def real_log_density(self, real: Real) -> Real:
        return laplace_log_density(real, self.mean, self.scale)

    @property
    def generator(self) -> Generator[Any]:
        return tfp_generator(tfd.Laplace, self.mean, self.scale)


@Pytree.dataclass
class Uniform(Continuous):
    """Uniform on `[low, high]`."""

    low: RealLike
    high: RealLike

    @property
    def param(self) -> RandomVariable[Real]:
        # Squeeze an unbounded x into (0, 1) with the logistic function, whose
        # derivative is s(1 - s), then map affinely onto [low, high].
        # log s(1 - s) = -softplus(-x) - softplus(x), finite for any x.
        def squeeze(x):
            standard = x.sigmoid()
            width = as_real(self.high - self.low)
            value = standard * width + self.low
            jacobian = -(-x).softplus() - x.softplus() + width.log()
            return RandomVariable(value, jacobian + self.real_log_density(value))

        return unbounded.param.flat_map(squeeze)

    def real_log_density(self, real: Real) -> Real:
        inside = Real.where(
            real <= self.high,
            -as_real(self.high - self.low).log(),
            Real.negative_infinity,
        )
        return Real.where(real >= self.low, inside, Real.negative_infinity)

    @property
    def generator(self) -> Generator[Any]:
        return tfp_generator(tfd.Uniform, self.low, self.high)
