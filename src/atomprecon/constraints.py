"""Degree-of-freedom constraints and operator projection.

Preconditioners in this package act on atomic positions only, with the
simulation cell held fixed. Two constraint kinds are distinguished:

- :class:`FixedCell`: the cell is fixed; a subset of atoms may additionally
  be frozen through :class:`ase.constraints.FixAtoms`.
- :class:`VariableCell`: the configuration is wrapped in a cell filter and
  exposes cell degrees of freedom. Not supported by the preconditioners.

A plain :class:`ase.filters.Filter` exposing a subset of the atoms is rejected;
freeze atoms with ``FixAtoms`` instead.

Projection
----------
For a fixed-cell constraint with frozen degrees of freedom :math:`F`, the
projected operator is

.. math::

    \\tilde{P}_{ab} = \\begin{cases}
        \\delta_{ab} & a \\in F \\text{ or } b \\in F \\\\
        P_{ab} & \\text{otherwise}
    \\end{cases}

which keeps the operator symmetric positive-definite and decouples frozen
degrees of freedom from the rest.

"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import torch
from ase.constraints import FixAtoms
from ase.filters import Filter, FrechetCellFilter, StrainFilter, UnitCellFilter

from atomprecon.atoms import unwrap
from atomprecon.exceptions import UnsupportedConstraintError

_CELL_FILTERS = (UnitCellFilter, FrechetCellFilter, StrainFilter)


@dataclass(frozen=True)
class FixedCell:
    """Fixed simulation cell, optionally with frozen atoms.

    Attributes
    ----------
    fixed_atoms : tuple[int, ...]
        Indices of atoms whose positions are frozen.

    """

    fixed_atoms: tuple[int, ...] = ()

    def dof_mask(self, n_atoms: int) -> torch.Tensor:
        """Return a boolean mask of shape ``[3 * n_atoms]`` marking frozen DOFs."""
        mask = torch.zeros(n_atoms, 3, dtype=torch.bool)
        if self.fixed_atoms:
            mask[list(self.fixed_atoms)] = True
        return mask.flatten()

    def project(self, matrix: torch.Tensor) -> torch.Tensor:
        """Project a sparse ``[3N, 3N]`` operator onto the free DOFs.

        Rows and columns of frozen DOFs are zeroed and their diagonal entries
        set to one. Without frozen atoms the operator is returned unchanged.

        """
        if not self.fixed_atoms:
            return matrix

        matrix = matrix.coalesce()
        mask = self.dof_mask(matrix.shape[0] // 3).to(matrix.device)
        rows, cols = matrix.indices()
        keep = ~(mask[rows] | mask[cols])

        fixed = torch.nonzero(mask).flatten()
        indices = torch.cat([matrix.indices()[:, keep], fixed.repeat(2, 1)], dim=1)
        values = torch.cat(
            [
                matrix.values()[keep],
                torch.ones(fixed.numel(), dtype=matrix.dtype, device=matrix.device),
            ]
        )
        return torch.sparse_coo_tensor(indices, values, matrix.shape).coalesce()


@dataclass(frozen=True)
class VariableCell:
    """Configuration whose cell is optimised alongside the positions.

    Attributes
    ----------
    filter_name : str
        Class name of the wrapping ase filter.

    """

    filter_name: str


def constraint(config: Any) -> FixedCell | VariableCell:
    """Determine the constraint a configuration is subject to.

    Parameters
    ----------
    config : ase.Atoms or ase filter
        The configuration.

    Returns
    -------
    FixedCell or VariableCell
        :class:`VariableCell` if ``config`` is a cell filter, otherwise a
        :class:`FixedCell` collecting the indices of all ``FixAtoms``
        constraints.

    Raises
    ------
    UnsupportedConstraintError
        If ``config`` is a filter exposing a subset of the atoms, or if the
        atoms carry an ase constraint other than ``FixAtoms``.

    """
    if isinstance(config, _CELL_FILTERS):
        return VariableCell(type(config).__name__)
    if isinstance(config, Filter):
        # Its vectors cover only the selected atoms, not all 3N DOFs
        msg = "Filters exposing a subset of atoms are not supported; use FixAtoms instead."
        raise UnsupportedConstraintError(msg)

    fixed: set[int] = set()
    for c in unwrap(config).constraints:
        if not isinstance(c, FixAtoms):
            msg = f"Only FixAtoms constraints are supported, got {type(c).__name__}."
            raise UnsupportedConstraintError(msg)
        fixed.update(int(k) for k in c.get_indices())
    return FixedCell(tuple(sorted(fixed)))


def project(c: FixedCell | VariableCell, matrix: torch.Tensor) -> torch.Tensor:
    """Project an operator through a constraint.

    Raises
    ------
    UnsupportedConstraintError
        If ``c`` is not a :class:`FixedCell`.

    """
    if not isinstance(c, FixedCell):
        msg = f"Cannot project an operator through {c!r}; only FixedCell is supported."
        raise UnsupportedConstraintError(msg)
    return c.project(matrix)
