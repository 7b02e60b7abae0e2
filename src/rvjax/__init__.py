from beartype import BeartypeConf
from beartype.claw import beartype_this_package

conf = BeartypeConf(
    is_color=True,
    is_debug=False,
    is_pep484_tower=True,
    violation_type=TypeError,
)

beartype_this_package(conf=conf)

from ._compat import ensure_jax_tfp_compat

ensure_jax_tfp_compat()

from .context import Context, prepare
from .core import (
    IncompatibleBatchesError,
    Pytree,
    UnsupportedOperationError,
)
from .distributions import (
    Cauchy,
    Continuous,
    Distribution,
    Exponential,
    Laplace,
    LogNormal,
    NonNegative,
    Normal,
    StandardExponential,
    StudentsT,
    Transformed,
    Unbounded,
    Uniform,
    non_negative,
    standard_exponential,
    unbounded,
)
from .generator import Generator, tfp_generator
from .inference import HMC, MH, Diagnostics, Optimizer, Sampler
from .injection import Exp, Injection, Scale, Translate
from .likelihood import Likelihood, Predictor
from .random_variable import Batches, DensityTerm, RandomVariable, traverse
from .real import Column, Constant, Evaluator, Real, Variable, evaluate, variables

__all__ = [
    "HMC",
    "MH",
    "Batches",
    "Cauchy",
    "Column",
    "Constant",
    "Context",
    "Continuous",
    "DensityTerm",
    "Diagnostics",
    "Distribution",
    "Evaluator",
    "Exp",
    "Exponential",
    "Generator",
    "IncompatibleBatchesError",
    "Injection",
    "Laplace",
    "Likelihood",
    "LogNormal",
    "NonNegative",
    "Normal",
    "Optimizer",
    "Predictor",
    "Pytree",
    "RandomVariable",
    "Real",
    "Sampler",
    "Scale",
    "StandardExponential",
    "StudentsT",
    "Transformed",
    "Translate",
    "Unbounded",
    "Uniform",
    "UnsupportedOperationError",
    "Variable",
    "evaluate",
    "non_negative",
    "prepare",
    "standard_exponential",
    "tfp_generator",
    "traverse",
    "unbounded",
    "variables",
]
