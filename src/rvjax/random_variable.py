"""The probability monad used to build probabilistic programs.

A `RandomVariable` pairs a payload with the unnormalized log-density of the
model built so far and the mini-batch descriptors that model touches.
Programs are composed with `map`, `flat_map`, `zip`, `condition` and
`traverse`; the accumulated density is only realized when the program is
handed to a sampler or optimizer.

Density contributions are deduplicated by an explicit id assigned when each
`DensityTerm` is created. Reusing a sub-program, e.g. `p.zip(p)`, therefore
counts its density once, while two numerically equal terms produced by two
different composition steps both count.
"""

import threading

import jax.numpy as jnp
import jax.random as jrand

from rvjax.core import (
    Any,
    ArrayLike,
    Callable,
    Generic,
    IncompatibleBatchesError,
    Mapping,
    PRNGKey,
    Pytree,
    Sequence,
    T,
    U,
    fresh_id,
)
from rvjax.real import Real, as_real


@Pytree.dataclass
class DensityTerm(Pytree):
    """A single contribution to a program's log-density."""

    real: Real = Pytree.static()
    id: int = Pytree.static(default_factory=fresh_id)


@Pytree.dataclass
class Batches(Pytree):
    """Columns of observations split into `num_batches` contiguous mini-batches."""

    columns: tuple = Pytree.static()
    num_batches: int = Pytree.static(default=1)

    def bindings(self, i: int) -> dict[int, Any]:
        """Bind every column to its data slice for mini-batch `i`."""
        return {
            column.id: jnp.array_split(column.data, self.num_batches)[i]
            for column in self.columns
        }

    def merge(self, others: Sequence["Batches"]) -> "Batches":
        columns = tuple(c for b in (self, *others) for c in b.columns)
        return Batches(columns, self.num_batches)


def _check_batches(left: tuple, right: tuple):
    if left and right and left[0].num_batches != right[0].num_batches:
        raise IncompatibleBatchesError(
            "Cannot compose programs batched over different numbers of "
            f"mini-batches ({left[0].num_batches} and {right[0].num_batches})."
        )


def _union_batches(left: tuple, right: tuple) -> tuple:
    return left + tuple(b for b in right if not any(b is a for a in left))


class RandomVariable(Generic[T]):
    """A payload together with the log-density and batches of its model.

    Instances are never mutated: every combinator returns a new instance.
    The only cached state is the summed density, computed at most once.

    Examples:
        >>> from rvjax import Normal, RandomVariable
        >>> mu = Normal(0.0, 1.0).param
        >>> model = mu.flat_map(lambda m: Normal(m, 1.0).fit([0.3, -0.1]).map(lambda _: m))
    """

    def __init__(
        self,
        value: T,
        density: Real | ArrayLike | None = None,
        batches: Batches | None = None,
    ):
        self.value = value
        term = DensityTerm(as_real(Real.zero if density is None else density))
        self.densities: dict[int, DensityTerm] = {term.id: term}
        self.batches: tuple = () if batches is None else (batches,)
        self._density = None
        self._density_lock = threading.Lock()

    @classmethod
    def _make(
        cls,
        value: Any,
        densities: Mapping[int, DensityTerm],
        batches: tuple,
    ) -> "RandomVariable[Any]":
        rv = cls.__new__(cls)
        rv.value = value
        rv.densities = dict(densities)
        rv.batches = batches
        rv._density = None
        rv._density_lock = threading.Lock()
        return rv

    @staticmethod
    def from_density(density: Real | ArrayLike) -> "RandomVariable[None]":
        return RandomVariable(None, density)

    def __repr__(self):
        return (
            f"RandomVariable(value={self.value!r}, "
            f"densities={len(self.densities)}, batches={len(self.batches)})"
        )

    ###############
    # Composition #
    ###############

    def map(self, fn: Callable[[T], U]) -> "RandomVariable[U]":
        return RandomVariable._make(fn(self.value), self.densities, self.batches)

    def flat_map(self, fn: Callable[[T], "RandomVariable[U]"]) -> "RandomVariable[U]":
        rv = fn(self.value)
        _check_batches(self.batches, rv.batches)
        return RandomVariable._make(
            rv.value,
            {**self.densities, **rv.densities},
            _union_batches(self.batches, rv.batches),
        )

    def zip(self, other: "RandomVariable[U]") -> "RandomVariable[tuple[T, U]]":
        return self.flat_map(lambda t: other.map(lambda u: (t, u)))

    def condition(self, fn: Callable[[T], Any]) -> "RandomVariable[T]":
        """Add the density term `fn(value)`, keeping the payload."""
        return self.flat_map(
            lambda t: RandomVariable.from_density(fn(t)).map(lambda _: t)
        )

    def condition_on(
        self,
        observations: Any,
        likelihood: Callable[[T], Any] | None = None,
    ) -> "RandomVariable[T]":
        """Condition on observed data through the payload's `Likelihood`.

        The payload must itself be a `Likelihood`, unless `likelihood` is
        given to adapt it into one.
        """
        return self.flat_map(
            lambda t: _as_likelihood(t, likelihood).fit(observations).map(lambda _: t)
        )

    def condition_on_batches(
        self,
        observations: Any,
        num_batches: int,
        likelihood: Callable[[T], Any] | None = None,
    ) -> "RandomVariable[T]":
        return self.flat_map(
            lambda t: _as_likelihood(t, likelihood)
            .fit_batched(observations, num_batches)
            .map(lambda _: t)
        )

    def with_filter(self, predicate: Callable[[T], bool]) -> "RandomVariable[T]":
        """Keep the program if `predicate` holds, otherwise give it zero probability."""
        if predicate(self.value):
            return self
        return self.condition(lambda _: Real.negative_infinity)

    @staticmethod
    def traverse(rvs: Sequence["RandomVariable[Any]"]) -> "RandomVariable[list]":
        return traverse(rvs)

    ###########
    # Density #
    ###########

    @property
    def density(self) -> Real:
        """Sum of the deduplicated density terms, computed once."""
        if self._density is None:
            with self._density_lock:
                if self._density is None:
                    self._density = Real.sum_of(
                        term.real for term in self.densities.values()
                    )
        return self._density

    ############
    # Terminal #
    ############

    def _require_unbatched(self, operation: str):
        if self.batches:
            raise ValueError(
                f"`{operation}` is not supported on a batched program; use `optimize`."
            )

    def get(self, key: PRNGKey) -> Any:
        """Realize a payload that has no free variables, drawing any generators."""
        from rvjax.context import Context, prepare

        self._require_unbatched("get")
        fn = prepare(self.value, Context(Real.zero))
        return fn(jnp.zeros((0,)), key)

    def sample(
        self,
        key: PRNGKey,
        sampler=None,
        warmup_iterations: int | None = None,
        iterations: int | None = None,
        keep_every: int = 1,
    ) -> list:
        from rvjax.context import Context, prepare
        from rvjax.inference import samplers

        self._require_unbatched("sample")
        sampler = samplers.default_sampler() if sampler is None else sampler
        if warmup_iterations is None:
            warmup_iterations = samplers.DEFAULT_WARMUP_ITERATIONS
        if iterations is None:
            iterations = samplers.DEFAULT_ITERATIONS

        context = Context(self.density, self.value)
        fn = prepare(self.value, context)
        chain_key, draw_key = jrand.split(key)
        result = samplers.run_chain(
            chain_key, context, sampler, warmup_iterations, iterations, keep_every
        )
        draw_keys = jrand.split(draw_key, result.samples.shape[0])
        return [fn(params, k) for params, k in zip(result.samples, draw_keys)]

    def sample_with_diagnostics(
        self,
        key: PRNGKey,
        sampler,
        chains: int,
        warmup_iterations: int,
        iterations: int,
        parallel: bool = True,
        keep_every: int = 1,
    ) -> tuple[list, list]:
        from rvjax.context import Context, prepare
        from rvjax.inference import samplers

        self._require_unbatched("sample_with_diagnostics")
        context = Context(self.density, self.value)
        fn = prepare(self.value, context)
        chain_key, draw_key = jrand.split(key)
        results = samplers.run_chains(
            chain_key,
            context,
            sampler,
            chains,
            warmup_iterations,
            iterations,
            parallel=parallel,
            keep_every=keep_every,
        )
        all_params = [params for result in results for params in result.samples]
        draw_keys = jrand.split(draw_key, len(all_params))
        values = [fn(params, k) for params, k in zip(all_params, draw_keys)]
        diagnostics = samplers.diagnostics(
            jnp.stack([result.samples for result in results])
        )
        return values, diagnostics

    def optimize(
        self,
        key: PRNGKey,
        optimizer,
        iterations: int,
        samples: int | None = None,
    ) -> Any:
        """Find a mode of the density, cycling through mini-batches if any.

        Returns a single payload, or a list of `samples` payloads (with any
        generators redrawn for each) when `samples` is given.
        """
        from rvjax.context import Context, prepare

        context = Context(self.density, self.value)
        if self.batches:
            batches = self.batches[0].merge(self.batches[1:])
        else:
            batches = Batches(())
        opt_key, draw_key = jrand.split(key)
        params = optimizer.optimize(opt_key, context, batches, iterations)
        fn = prepare(self.value, context)
        if samples is None:
            return fn(params, draw_key)
        return [fn(params, k) for k in jrand.split(draw_key, samples)]


def _as_likelihood(t, likelihood):
    from rvjax.likelihood import Likelihood

    lh = t if likelihood is None else likelihood(t)
    if not isinstance(lh, Likelihood):
        raise TypeError(
            f"Cannot condition on observations: {type(lh).__name__} is not a Likelihood."
        )
    return lh


def traverse(rvs: Sequence[RandomVariable[Any]]) -> RandomVariable[list]:
    """Turn a sequence of programs into a program over the sequence of payloads."""

    def go(accum: RandomVariable[tuple], rv: RandomVariable[Any]) -> RandomVariable[tuple]:
        return rv.flat_map(lambda v: accum.map(lambda vs: (v, *vs)))

    accum = RandomVariable(())
    for rv in rvs:
        accum = go(accum, rv)
    return accum.map(lambda vs: list(reversed(vs)))

