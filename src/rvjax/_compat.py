"""Compatibility helpers for third-party API transitions.

TensorFlow Probability backs every generator in `rvjax.generator`; these
shims keep it importable on JAX releases newer than the one it targets and can
be removed once TFP supports them directly.
"""

from __future__ import annotations

import jax
from jax.interpreters import xla


def ensure_jax_tfp_compat() -> None:
    """Install small compatibility shims needed by current TFP on JAX >= 0.7.

    TFP 0.25 still references ``jax.interpreters.xla.pytype_aval_mappings``,
    which was removed in JAX 0.7 in favor of ``jax.core.pytype_aval_mappings``.
    """

    if not hasattr(xla, "pytype_aval_mappings") and hasattr(
        jax.core, "pytype_aval_mappings"
    ):
        xla.pytype_aval_mappings = jax.core.pytype_aval_mappings
