"""Gradient-based mode finding over the unconstrained coordinates of a `Context`.

The objective is the negative log-density. When the model carries mini-batch
descriptors, iteration `i` binds every column to mini-batch
`i % num_batches`, so each step sees one slice of the data.
"""

import warnings

import jax
import jax.numpy as jnp
import jax.random as jrand
import optax

from rvjax.core import (
    Any,
    Array,
    PRNGKey,
    Pytree,
)


@Pytree.dataclass
class Optimizer(Pytree):
    """Maximize a model's density with an optax gradient transformation.

    Attributes:
        learning_rate: Step size handed to optax
        method: One of "adam", "sgd" or "rmsprop"
    """

    learning_rate: float = Pytree.static(default=0.05)
    method: str = Pytree.static(default="adam")

    def transformation(self) -> optax.GradientTransformation:
        if self.method == "adam":
            return optax.adam(self.learning_rate)
        elif self.method == "sgd":
            return optax.sgd(self.learning_rate)
        elif self.method == "rmsprop":
            return optax.rmsprop(self.learning_rate)
        else:
            raise ValueError(f"Unknown optimization method: {self.method}")

    def optimize(
        self,
        key: PRNGKey,
        context: Any,
        batches: Any,
        iterations: int,
    ) -> Array:
        """
        Run `iterations` optimizer steps from a random start.

        Args:
            key: PRNG key for the starting point
            context: Compiled model density
            batches: Merged mini-batch descriptor of the model
            iterations: Number of gradient steps

        Returns:
            Parameter array of shape (ndim,)
        """
        tx = self.transformation()
        params = jrand.uniform(key, (context.ndim,), minval=-0.5, maxval=0.5)
        opt_state = tx.init(params)
        batch_bindings = [batches.bindings(i) for i in range(batches.num_batches)]

        def loss(params, bindings):
            return -context.log_density(params, bindings)

        @jax.jit
        def step(params, opt_state, bindings):
            value, grads = jax.value_and_grad(loss)(params, bindings)
            updates, opt_state = tx.update(grads, opt_state, params)
            return optax.apply_updates(params, updates), opt_state, value

        value = jnp.nan
        for i in range(iterations):
            bindings = batch_bindings[i % len(batch_bindings)]
            params, opt_state, value = step(params, opt_state, bindings)

        if iterations > 0 and not jnp.isfinite(value):
            warnings.warn(
                f"Optimization ended at a non-finite objective ({value}); "
                "try a smaller learning rate."
            )
        return params
