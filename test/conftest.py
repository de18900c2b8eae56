import pytest
import torch

from gradfn.config import GradConfig, set_config


@pytest.fixture(scope="session", autouse=True)
def torch_double_precision():
    """
    Make torch build float64 tensors by default so reference values
    compare with the float64 arrays used in the tests.
    """
    old_dtype = torch.get_default_dtype()
    torch.set_default_dtype(torch.float64)

    yield  # Run the tests with float64 as default

    # revert back after tests
    torch.set_default_dtype(old_dtype)


@pytest.fixture(autouse=True)
def fresh_config():
    """
    Every test starts from a known configuration with a seeded generator,
    independent of the GRADFN_* environment variables.
    """
    set_config(GradConfig(seed=42))
    yield
    set_config(None)
