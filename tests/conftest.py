"""
Pytest configuration and shared fixtures for hfit tests.
"""

import pytest
import numpy as np
import sys
from pathlib import Path

# Add the parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))


def grid_params(n: int, dim: int = 2) -> np.ndarray:
    """Uniform grid of n points per direction on [0, 1]^dim, shape (n**dim, dim)."""
    axes = [np.linspace(0.0, 1.0, n)] * dim
    mesh = np.meshgrid(*axes, indexing='ij')
    return np.column_stack([m.ravel() for m in mesh])


@pytest.fixture
def tolerance():
    """Default tolerance for floating point comparisons."""
    return 1e-12


@pytest.fixture
def loose_tolerance():
    """Looser tolerance for least-squares results."""
    return 1e-8


@pytest.fixture
def rng():
    """Seeded random generator."""
    return np.random.default_rng(1234)


@pytest.fixture
def grid():
    """30 x 30 parameter grid on the unit square."""
    return grid_params(30)


@pytest.fixture
def step_data(grid):
    """Parameters and values of a steep transition along x."""
    values = np.tanh(10.0 * (grid[:, 0] - 0.5))
    return grid, values
