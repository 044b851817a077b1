"""Shared fixtures for atomprecon tests."""

import pytest
from ase import Atoms
from ase.build import bulk

import atomprecon as ap


@pytest.fixture(autouse=True)
def _reset_config():
    """Restore the global configuration after every test."""
    yield
    ap.config.reset()


@pytest.fixture
def law() -> ap.ExpInteraction:
    """Exp law with r0 = 2.5 and cutoff 5.5."""
    return ap.ExpInteraction(A=3.0, r0=2.5, cutoff=5.5)


@pytest.fixture
def dimer() -> Atoms:
    """Two Cu atoms at 0.9 r0 in open boundaries."""
    return Atoms("Cu2", positions=[[0.0, 0.0, 0.0], [2.25, 0.0, 0.0]])


@pytest.fixture
def chain() -> Atoms:
    """Three Cu atoms on a line, 2.5 apart."""
    return Atoms("Cu3", positions=[[0.0, 0.0, 0.0], [2.5, 0.0, 0.0], [5.0, 0.0, 0.0]])


@pytest.fixture
def crystal() -> Atoms:
    """Slightly rattled periodic fcc Cu supercell with 32 atoms."""
    atoms = bulk("Cu", cubic=True) * (2, 2, 2)
    atoms.rattle(0.05, seed=1)
    return atoms


@pytest.fixture(params=["amg", "cg", "direct"])
def backend(request) -> str:
    """Name of each shipped solver backend."""
    return request.param
