"""Compile a symbolic density into a function of a flat parameter array.

A `Context` fixes an ordering of the free `Variable`s of a model, so that
samplers and optimizers can work with a single `(ndim,)` array, and
`prepare` maps such an array back to a concrete payload.
"""

import jax.numpy as jnp
import jax.random as jrand
import jax.tree_util as jtu

from rvjax.core import (
    Any,
    Array,
    Callable,
    Mapping,
)
from rvjax.generator import Generator
from rvjax.real import Evaluator, Real, variables


class Context:
    """The free variables of a density, with a fixed layout.

    `roots` are extra expressions, typically the payload, whose variables are
    also given coordinates even if the density does not mention them.
    """

    def __init__(self, density: Real, *roots):
        self.density = density
        leaves = [
            leaf
            for root in roots
            for leaf in jtu.tree_leaves(root, is_leaf=_is_payload_leaf)
        ]
        self.variables = variables(density, *leaves)

    @property
    def ndim(self) -> int:
        return len(self.variables)

    def evaluator(self, params, bindings: Mapping[int, Any] | None = None) -> Evaluator:
        values = {v.id: params[i] for i, v in enumerate(self.variables)}
        values.update(bindings or {})
        return Evaluator(values)

    def log_density(self, params, bindings: Mapping[int, Any] | None = None):
        """The model's log-density at `params`; traceable by `jax.jit` and `jax.grad`."""
        return jnp.sum(self.evaluator(params, bindings).evaluate(self.density))


def _is_payload_leaf(x) -> bool:
    return isinstance(x, (Real, Generator))


def prepare(value: Any, context: Context) -> Callable[[Array, Any], Any]:
    """Build a function from a raw parameter array (and a key, for generators)
    to a concrete version of `value`.

    Every `Real` in the payload is evaluated and every `Generator` is drawn;
    the rest of the payload's structure is kept.
    """
    leaves, treedef = jtu.tree_flatten(value, is_leaf=_is_payload_leaf)
    n_generators = sum(isinstance(leaf, Generator) for leaf in leaves)

    def realize(params: Array, key) -> Any:
        evaluator = context.evaluator(params)
        keys = iter(jrand.split(key, n_generators)) if n_generators else iter(())
        realized = []
        for leaf in leaves:
            if isinstance(leaf, Real):
                realized.append(evaluator.evaluate(leaf))
            elif isinstance(leaf, Generator):
                realized.append(leaf.get(next(keys), evaluator))
            else:
                realized.append(leaf)
        return jtu.tree_unflatten(treedef, realized)

    return realize
