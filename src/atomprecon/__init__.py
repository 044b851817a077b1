"""atomprecon: cached sparse preconditioners for atomistic relaxation.

This package supplies a physically motivated linear preconditioner to an
external optimizer relaxing an atomic configuration. The preconditioner is
a sparse bond-graph operator assembled from a pairwise stiffness law; it is
cached between optimizer steps and rebuilt only when atoms have drifted far
enough, or enough steps have passed, for it to be stale.
The package can be imported as ``ap`` for convenience:

.. code-block:: python

    import atomprecon as ap
    from ase.build import bulk

    atoms = bulk("Cu", cubic=True) * (4, 4, 4)
    P = ap.Exp(atoms)                 # assembles and builds the AMG solver

    # inside the optimizer loop
    P.update(atoms)                   # rebuilds only when stale
    direction = P.solve(atoms.get_forces())

"""

from atomprecon._version import __version__
from atomprecon.assembly import assemble, atom_to_dofs
from atomprecon.atoms import bonds, chemical_symbols, num_atoms, positions
from atomprecon.backends import Backend, build_solver, registry
from atomprecon.config import PreconConfig, config
from atomprecon.constraints import FixedCell, VariableCell, constraint, project
from atomprecon.exceptions import (
    AssemblyError,
    BackendNotAvailableError,
    PreconError,
    SolverBuildError,
    UnsupportedConstraintError,
)
from atomprecon.exp import Exp, estimate_rnn, make_exp
from atomprecon.interactions import (
    AnalyticInteraction,
    ExpInteraction,
    PairInteraction,
    refresh_interaction,
)
from atomprecon.logging_config import setup_logging
from atomprecon.precon import AMGPrecon
from atomprecon.species import reference_bond_length
from atomprecon.staleness import max_displacement, needs_rebuild

__all__ = [
    "__version__",
    # Configuration
    "PreconConfig",
    "config",
    "setup_logging",
    # Errors
    "AssemblyError",
    "BackendNotAvailableError",
    "PreconError",
    "SolverBuildError",
    "UnsupportedConstraintError",
    # Atoms and constraints
    "FixedCell",
    "VariableCell",
    "bonds",
    "chemical_symbols",
    "constraint",
    "num_atoms",
    "positions",
    "project",
    # Interactions and assembly
    "AnalyticInteraction",
    "ExpInteraction",
    "PairInteraction",
    "assemble",
    "atom_to_dofs",
    "refresh_interaction",
    # Backends
    "Backend",
    "build_solver",
    "registry",
    # Preconditioners
    "AMGPrecon",
    "Exp",
    "estimate_rnn",
    "make_exp",
    "max_displacement",
    "needs_rebuild",
    "reference_bond_length",
]
