"""Deterministic bijections applied to continuous distributions.

`Continuous.scaled`, `Continuous.translated` and `Continuous.exp` wrap a
distribution in `Transformed` with one of these injections. The transformed
log-density is the base log-density at `backward(y)` plus
`log_jacobian(y) = log |d backward / dy|`.
"""

from abc import abstractmethod

import jax.numpy as jnp

from rvjax.core import Any, Pytree
from rvjax.real import Real, as_real


def _exp(x):
    return x.exp() if isinstance(x, Real) else jnp.exp(x)


def _log(x):
    return x.log() if isinstance(x, Real) else jnp.log(x)


class Injection(Pytree):
    @abstractmethod
    def forward(self, x: Any) -> Any:
        pass

    @abstractmethod
    def backward(self, y: Any) -> Any:
        pass

    @abstractmethod
    def log_jacobian(self, y: Any) -> Any:
        pass

    def transform(self, dist: Any) -> Any:
        from rvjax.distributions import Transformed

        return Transformed(dist, self)


@Pytree.dataclass
class Scale(Injection):
    a: Any

    def forward(self, x: Any) -> Any:
        return x * self.a

    def backward(self, y: Any) -> Any:
        return y / self.a

    def log_jacobian(self, y: Any) -> Any:
        return -as_real(self.a).abs().log()


@Pytree.dataclass
class Translate(Injection):
    b: Any

    def forward(self, x: Any) -> Any:
        return x + self.b

    def backward(self, y: Any) -> Any:
        return y - self.b

    def log_jacobian(self, y: Any) -> Any:
        return Real.zero


@Pytree.dataclass
class Exp(Injection):
    def forward(self, x: Any) -> Any:
        return _exp(x)

    def backward(self, y: Any) -> Any:
        return _log(y)

    def log_jacobian(self, y: Any) -> Any:
        return -as_real(_log(y))
