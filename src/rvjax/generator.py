"""Keyed random draws with numeric parameters.

A `Generator` wraps a function `(key, evaluator) -> value`. The evaluator
turns any symbolic `Real` parameter into a number, so the same generator can
be drawn for a fixed model or for each posterior sample handed back by a
sampler. Distribution generators are built on TensorFlow Probability.
"""

import jax.random as jrand
from tensorflow_probability.substrates import jax as tfp

from rvjax.core import (
    A,
    B,
    Any,
    Callable,
    Generic,
    PRNGKey,
    Pytree,
    Sequence,
)
from rvjax.real import Evaluator, Real

tfd = tfp.distributions


@Pytree.dataclass
class Generator(Generic[A], Pytree):
    fn: Callable[[Any, Evaluator], Any] = Pytree.static()

    def get(self, key: PRNGKey, evaluator: Evaluator | None = None) -> A:
        return self.fn(key, Evaluator() if evaluator is None else evaluator)

    def map(self, f: Callable[[A], B]) -> "Generator[B]":
        return Generator(lambda key, n: f(self.fn(key, n)))

    def flat_map(self, f: Callable[[A], "Generator[B]"]) -> "Generator[B]":
        def fn(key, n):
            key1, key2 = jrand.split(key)
            return f(self.fn(key1, n)).fn(key2, n)

        return Generator(fn)

    def zip(self, other: "Generator[B]") -> "Generator[tuple[A, B]]":
        return self.flat_map(lambda a: other.map(lambda b: (a, b)))

    def repeat(self, k: int) -> "Generator[list[A]]":
        def fn(key, n):
            return [self.fn(sub, n) for sub in jrand.split(key, k)]

        return Generator(fn)

    @staticmethod
    def constant(a: Any) -> "Generator[Any]":
        return Generator(lambda key, n: a)

    @staticmethod
    def real(x: Real) -> "Generator[Any]":
        """Evaluate `x` under the evaluator the generator is drawn with."""
        return Generator(lambda key, n: n(x))

    @staticmethod
    def traverse(generators: Sequence["Generator[Any]"]) -> "Generator[list]":
        generators = list(generators)

        def fn(key, n):
            if not generators:
                return []
            keys = jrand.split(key, len(generators))
            return [g.fn(k, n) for g, k in zip(generators, keys)]

        return Generator(fn)


def tfp_generator(make: Callable[..., "tfd.Distribution"], *params) -> Generator[Any]:
    """A generator sampling `make(*params)` with `params` evaluated first.

    Example:
        >>> tfp_generator(tfd.Normal, mean, stddev)
    """

    def fn(key, n):
        return make(*(n(p) for p in params)).sample(seed=key)

    return Generator(fn)
