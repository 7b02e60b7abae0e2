"""
Inference for rvjax programs: MCMC samplers and optimizers.
"""

from .optimizers import Optimizer
from .samplers import (
    DEFAULT_ITERATIONS,
    DEFAULT_WARMUP_ITERATIONS,
    HMC,
    MH,
    ChainResult,
    Diagnostics,
    Sampler,
    compute_ess,
    compute_rhat,
    default_sampler,
    diagnostics,
    run_chain,
    run_chains,
)

__all__ = [
    "DEFAULT_ITERATIONS",
    "DEFAULT_WARMUP_ITERATIONS",
    "HMC",
    "MH",
    "ChainResult",
    "Diagnostics",
    "Optimizer",
    "Sampler",
    "compute_ess",
    "compute_rhat",
    "default_sampler",
    "diagnostics",
    "run_chain",
    "run_chains",
]
