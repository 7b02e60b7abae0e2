import itertools as it
import threading
from dataclasses import field
from typing import overload

import beartype.typing as btyping
import jaxtyping as jtyping
import penzai.pz as pz
from typing_extensions import dataclass_transform

##########
# Typing #
##########

Any = btyping.Any
PRNGKey = jtyping.PRNGKeyArray
Array = jtyping.Array
ArrayLike = jtyping.ArrayLike
FloatArray = jtyping.Float[jtyping.Array, "..."]
Callable = btyping.Callable
Sequence = btyping.Sequence
Iterable = btyping.Iterable
Mapping = btyping.Mapping
Optional = btyping.Optional
Generic = btyping.Generic
TypeVar = btyping.TypeVar

A = TypeVar("A")
B = TypeVar("B")
T = TypeVar("T")
U = TypeVar("U")
V = TypeVar("V")
X = TypeVar("X")

##########
# Pytree #
##########


class Pytree(pz.Struct):
    """`Pytree` is an abstract base class which registers a class with JAX's `Pytree`
    system, so that distributions, batch descriptors and inference results can
    cross `jax.jit` and `jax.tree_util` boundaries.

    * `Pytree.static(...)`: the value of the field cannot
    be a JAX traced value, it must be a Python literal, or a constant).
    The values of static fields are embedded in the `PyTreeDef` of any
    instance of the class.
    * `Pytree.field(...)` or no annotation: the value may be a JAX traced
    value, and JAX will attempt to convert it to tracer values inside of
    its transformations.
    """

    @staticmethod
    @overload
    def dataclass(
        incoming: None = None,
        /,
        **kwargs,
    ) -> Callable[[type[A]], type[A]]: ...

    @staticmethod
    @overload
    def dataclass(
        incoming: type[A],
        /,
        **kwargs,
    ) -> type[A]: ...

    @dataclass_transform(
        frozen_default=True,
    )
    @staticmethod
    def dataclass(
        incoming: type[A] | None = None,
        /,
        **kwargs,
    ) -> type[A] | Callable[[type[A]], type[A]]:
        """
        Denote that a class (which is inheriting `Pytree`) should be treated
        as a dataclass, meaning it can hold data in fields which are
        declared as part of the class.

        Examples
        --------

        ```{python}
        from rvjax import Pytree


        @Pytree.dataclass
        class Shift(Pytree):
            offset: float
            label: str = Pytree.static(default="shift")


        Shift(2.0)
        ```
        """

        return pz.pytree_dataclass(
            incoming,
            overwrite_parent_init=True,
            **kwargs,
        )

    @staticmethod
    def static(**kwargs):
        """Declare a field of a `Pytree` dataclass to be static.
        Fields which are provided with default values must come after
        required fields in the dataclass declaration."""
        return field(metadata={"pytree_node": False}, **kwargs)

    @staticmethod
    def field(**kwargs):
        """Declare a field of a `Pytree` dataclass to be dynamic.
        Alternatively, one can leave the annotation off in the declaration."""
        return field(**kwargs)


##############
# Unique ids #
##############


class IdCounter:
    """Process-wide source of unique, monotonically increasing integer ids.

    Variables and density terms draw their identity from here, so that two
    numerically identical expressions built by different composition steps
    are still told apart.
    """

    def __init__(self):
        self._count = it.count()
        self._lock = threading.Lock()

    def __call__(self) -> int:
        with self._lock:
            return next(self._count)


fresh_id = IdCounter()

##########
# Errors #
##########


class IncompatibleBatchesError(ValueError):
    """Raised when programs batched over different numbers of mini-batches
    are composed together."""


class UnsupportedOperationError(NotImplementedError):
    """Raised when a distribution has no definition for an operation, e.g. a
    generator for an improper prior."""
