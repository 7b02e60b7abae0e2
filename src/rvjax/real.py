"""Symbolic scalar expressions for log-densities.

A `Real` is an immutable node in an expression DAG. Leaves are constants,
unconstrained `Variable`s (the coordinates a sampler moves in) and `Column`s
(placeholders for per-observation data). Interior nodes record elementwise
`jax.numpy` operations, so an expression is evaluated (and differentiated) by
walking the graph with an `Evaluator` inside an ordinary JAX function.
"""

import jax
import jax.numpy as jnp
import jax.scipy.special as jsp

from rvjax.core import (
    Any,
    ArrayLike,
    Iterable,
    Mapping,
    fresh_id,
)

_UNARY = {
    "neg": jnp.negative,
    "log": jnp.log,
    "log1p": jnp.log1p,
    "exp": jnp.exp,
    "abs": jnp.abs,
    "lgamma": jsp.gammaln,
    "sum": jnp.sum,
    "sigmoid": jax.nn.sigmoid,
    "softplus": jax.nn.softplus,
}

_BINARY = {
    "add": jnp.add,
    "sub": jnp.subtract,
    "mul": jnp.multiply,
    "div": jnp.divide,
    "pow": jnp.power,
    "gt": jnp.greater,
    "ge": jnp.greater_equal,
    "lt": jnp.less,
    "le": jnp.less_equal,
}


def as_real(x) -> "Real":
    return x if isinstance(x, Real) else Constant(x)


class Real:
    """Base class of all expression nodes.

    Nodes compare and hash by identity. Comparison operators build
    elementwise boolean nodes (for use with `Real.where`), so a `Real` has no
    truth value.
    """

    # Keep numpy from broadcasting a `Real` into an object array.
    __array_ufunc__ = None

    children: tuple = ()

    def compute(self, values: Mapping[int, Any], inputs: list) -> Any:
        raise NotImplementedError

    def __bool__(self):
        raise TypeError(
            "A symbolic Real has no truth value; use Real.where to branch on it."
        )

    def __add__(self, other):
        return Binary("add", self, as_real(other))

    def __radd__(self, other):
        return Binary("add", as_real(other), self)

    def __sub__(self, other):
        return Binary("sub", self, as_real(other))

    def __rsub__(self, other):
        return Binary("sub", as_real(other), self)

    def __mul__(self, other):
        return Binary("mul", self, as_real(other))

    def __rmul__(self, other):
        return Binary("mul", as_real(other), self)

    def __truediv__(self, other):
        return Binary("div", self, as_real(other))

    def __rtruediv__(self, other):
        return Binary("div", as_real(other), self)

    def __pow__(self, other):
        return Binary("pow", self, as_real(other))

    def __neg__(self):
        return Unary("neg", self)

    def __abs__(self):
        return Unary("abs", self)

    def __gt__(self, other):
        return Binary("gt", self, as_real(other))

    def __ge__(self, other):
        return Binary("ge", self, as_real(other))

    def __lt__(self, other):
        return Binary("lt", self, as_real(other))

    def __le__(self, other):
        return Binary("le", self, as_real(other))

    def log(self) -> "Real":
        return Unary("log", self)

    def log1p(self) -> "Real":
        return Unary("log1p", self)

    def exp(self) -> "Real":
        return Unary("exp", self)

    def abs(self) -> "Real":
        return Unary("abs", self)

    def lgamma(self) -> "Real":
        return Unary("lgamma", self)

    def sigmoid(self) -> "Real":
        return Unary("sigmoid", self)

    def softplus(self) -> "Real":
        """`log(1 + exp(x))`, stable for large `|x|`."""
        return Unary("softplus", self)

    def sum(self) -> "Real":
        """Reduce an array-valued expression (e.g. one over a `Column`) to a scalar."""
        return Unary("sum", self)

    @staticmethod
    def sum_of(terms: Iterable) -> "Real":
        terms = [as_real(t) for t in terms]
        if not terms:
            return Constant(0.0)
        if len(terms) == 1:
            return terms[0]
        return Sum(tuple(terms))

    @staticmethod
    def where(condition: "Real", if_true, if_false) -> "Real":
        return Where(as_real(condition), as_real(if_true), as_real(if_false))


class Constant(Real):
    def __init__(self, value: ArrayLike):
        self.value = value

    def compute(self, values, inputs):
        return jnp.asarray(self.value)

    def __repr__(self):
        return f"Constant({self.value!r})"


class Variable(Real):
    """A fresh unconstrained real-valued coordinate."""

    def __init__(self):
        self.id = fresh_id()

    def compute(self, values, inputs):
        if self.id not in values:
            raise ValueError(f"{self!r} is not bound to a value.")
        return values[self.id]

    def __repr__(self):
        return f"Variable({self.id})"


class Column(Real):
    """A placeholder for a column of observations.

    Unless an `Evaluator` binds it to a mini-batch slice, a column evaluates
    to its full data.
    """

    def __init__(self, data: ArrayLike):
        self.id = fresh_id()
        self.data = jnp.asarray(data)

    def compute(self, values, inputs):
        return values.get(self.id, self.data)

    def __repr__(self):
        return f"Column({self.id}, shape={self.data.shape})"


class Unary(Real):
    def __init__(self, op: str, x: Real):
        self.op = op
        self.children = (x,)

    def compute(self, values, inputs):
        return _UNARY[self.op](inputs[0])


class Binary(Real):
    def __init__(self, op: str, left: Real, right: Real):
        self.op = op
        self.children = (left, right)

    def compute(self, values, inputs):
        return _BINARY[self.op](inputs[0], inputs[1])


class Where(Real):
    def __init__(self, condition: Real, if_true: Real, if_false: Real):
        self.children = (condition, if_true, if_false)

    def compute(self, values, inputs):
        return jnp.where(*inputs)


class Sum(Real):
    def __init__(self, terms: tuple):
        self.children = terms

    def compute(self, values, inputs):
        total = inputs[0]
        for x in inputs[1:]:
            total = total + x
        return total


Real.zero = Constant(0.0)
Real.one = Constant(1.0)
Real.negative_infinity = Constant(-jnp.inf)


##############
# Evaluation #
##############


class Evaluator:
    """Evaluates expressions under a binding of variable and column ids.

    Shared sub-expressions are computed once per evaluator. Anything that is
    not a `Real` is returned unchanged, so an evaluator can be applied to
    distribution parameters that are plain numbers.
    """

    def __init__(self, values: Mapping[int, Any] | None = None):
        self.values = dict(values or {})
        # Keyed by node, so cached nodes stay alive and their ids are never reused.
        self._cache = {}

    def __call__(self, x):
        if isinstance(x, Real):
            return self.evaluate(x)
        return x

    def evaluate(self, real: Real):
        cache = self._cache
        stack = [real]
        while stack:
            node = stack[-1]
            if node in cache:
                stack.pop()
                continue
            pending = [c for c in node.children if c not in cache]
            if pending:
                stack.extend(pending)
                continue
            stack.pop()
            inputs = [cache[c] for c in node.children]
            cache[node] = node.compute(self.values, inputs)
        return cache[real]


def evaluate(real, bindings: Mapping[Real, Any] | None = None):
    """Evaluate `real` with `Variable`/`Column` nodes bound by `bindings`."""
    values = {node.id: v for node, v in (bindings or {}).items()}
    return Evaluator(values)(real)


def _leaves(roots: Iterable, kind: type) -> list:
    seen = set()
    found = {}
    stack = [r for r in roots if isinstance(r, Real)]
    while stack:
        node = stack.pop()
        if id(node) in seen:
            continue
        seen.add(id(node))
        if isinstance(node, kind):
            found[node.id] = node
        stack.extend(node.children)
    return [found[i] for i in sorted(found)]


def variables(*roots) -> list[Variable]:
    """The distinct `Variable`s reachable from `roots`, in creation order."""
    return _leaves(roots, Variable)


def columns(*roots) -> list[Column]:
    return _leaves(roots, Column)
