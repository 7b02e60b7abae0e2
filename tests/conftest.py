import jax.random as jrand
import rvjax  # noqa: F401  -- installs the JAX/TFP compat shim before test modules import TFP
import pytest


@pytest.fixture
def base_key():
    """Root random key for reproducible tests."""
    return jrand.PRNGKey(42)


@pytest.fixture
def key(base_key):
    """Standard random key for reproducible tests."""
    return base_key


@pytest.fixture
def standard_tolerance():
    """Standard tolerance for numerical comparisons."""
    return 1e-4
