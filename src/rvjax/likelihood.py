"""Conditioning on observed data.

A `Likelihood` turns observations into a `RandomVariable` whose density is
their log-likelihood. Every `Distribution` is a likelihood of its own
observations; a `Predictor` is a likelihood of `(x, y)` pairs where `y`
depends on the covariate `x`.
"""

from abc import abstractmethod

import jax.numpy as jnp

from rvjax.core import (
    Any,
    Callable,
    Generic,
    Pytree,
    Sequence,
    UnsupportedOperationError,
    X,
)
from rvjax.generator import Generator
from rvjax.random_variable import Batches, RandomVariable
from rvjax.real import Column, Real


class Likelihood(Generic[X], Pytree):
    @abstractmethod
    def fit(self, observations: Any) -> RandomVariable[Any]:
        """A program whose density is the log-likelihood of `observations`."""

    def fit_batched(self, observations: Any, num_batches: int) -> RandomVariable[Any]:
        """Like `fit`, but with the observations split into `num_batches`
        mini-batches for stochastic optimization."""
        raise UnsupportedOperationError(
            f"{type(self).__name__} does not support batched fitting."
        )


@Pytree.dataclass
class Predictor(Likelihood[tuple]):
    """Fits `(x, y)` pairs where `y ~ fn(x)`.

    Examples:
        >>> slope = Normal(0.0, 1.0).param
        >>> model = slope.flat_map(
        ...     lambda a: Predictor.from_fn(lambda x: Normal(a * x, 1.0)).fit(pairs)
        ... )
    """

    fn: Callable[[Any], Any] = Pytree.static()

    @staticmethod
    def from_fn(fn: Callable[[Any], Any]) -> "Predictor":
        return Predictor(fn)

    def __call__(self, x: Any) -> Any:
        return self.fn(x)

    def predict(self, x: Any) -> Generator[Any]:
        return self(x).generator

    def predict_many(self, xs: Sequence[Any]) -> Generator[list]:
        return Generator.traverse(
            [self(x).generator.map(lambda y, x=x: (x, y)) for x in xs]
        )

    def fit(self, observations: Any) -> RandomVariable["Predictor"]:
        density = Real.sum_of(self(x).log_density(y) for x, y in observations)
        return RandomVariable(self, density)

    def fit_batched(
        self, observations: Any, num_batches: int
    ) -> RandomVariable["Predictor"]:
        xs = Column(jnp.asarray([x for x, _ in observations]))
        ys = Column(jnp.asarray([y for _, y in observations]))
        density = self(xs).real_log_density(ys).sum()
        return RandomVariable(self, density, Batches((xs, ys), num_batches))
