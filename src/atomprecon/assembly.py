"""Sparse preconditioner assembly.

The preconditioner matrix is a weighted graph Laplacian over the bond
network, replicated for each of the three Cartesian components. Every bond
:math:`(i, j)` with stiffness :math:`z_{ij}` contributes the local block

.. math::

    \\begin{pmatrix} z_{ij} & -z_{ij} \\\\ -z_{ij} & z_{ij} \\end{pmatrix}

to the rows and columns :math:`(3i + c, 3j + c)` for :math:`c = 0, 1, 2`.
Contributions from different bonds touching the same pair of DOFs add up.
Finally :math:`\\varepsilon I` is added so the operator is strictly
positive-definite, including for atoms without any bond.

Notes
-----
This is related to, but not the same as, the Hessian of the interaction
law: only the bond topology and a scalar weight per bond enter.

"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import torch

from atomprecon.atoms import bonds, num_atoms
from atomprecon.config import config as _config
from atomprecon.exceptions import AssemblyError

if TYPE_CHECKING:
    from atomprecon.interactions import PairInteraction


def atom_to_dofs(i: torch.Tensor | int) -> torch.Tensor:
    """Return the three linear DOF indices of atom (or atoms) ``i``.

    Parameters
    ----------
    i : torch.Tensor or int
        Atom index or tensor of atom indices with shape ``[n]``.

    Returns
    -------
    torch.Tensor
        ``[3i, 3i + 1, 3i + 2]``, with shape ``[3]`` or ``[n, 3]``.

    """
    i = torch.as_tensor(i, dtype=torch.int64)
    return 3 * i.unsqueeze(-1) + torch.arange(3, dtype=torch.int64)


def _stiffness(
    p: PairInteraction,
    i: torch.Tensor,
    j: torch.Tensor,
    r: torch.Tensor,
) -> torch.Tensor:
    """Evaluate the bond stiffnesses, raising :class:`AssemblyError` on failure."""
    too_long = r > p.cutoff
    if too_long.any():
        k = int(torch.nonzero(too_long)[0])
        bond = (int(i[k]), int(j[k]), float(r[k]))
        msg = f"Bond {bond} exceeds the interaction cutoff {p.cutoff}."
        raise AssemblyError(msg, bond)

    try:
        z = torch.as_tensor(p.evaluate(r), dtype=r.dtype)
    except Exception as err:
        msg = f"Stiffness evaluation failed for {type(p).__name__}: {err}"
        raise AssemblyError(msg) from err

    if z.shape != r.shape:
        msg = f"Stiffness has shape {tuple(z.shape)}, expected {tuple(r.shape)}."
        raise AssemblyError(msg)

    bad = ~torch.isfinite(z)
    if bad.any():
        k = int(torch.nonzero(bad)[0])
        bond = (int(i[k]), int(j[k]), float(r[k]))
        msg = f"Non-finite stiffness {float(z[k])} for bond {bond}."
        raise AssemblyError(msg, bond)
    return z


def assemble(
    p: PairInteraction,
    config: Any,
    regularization: float | None = None,
) -> torch.Tensor:
    """Assemble the preconditioner matrix for a pair interaction.

    Parameters
    ----------
    p : PairInteraction
        Stiffness law; its ``cutoff`` selects the bonds.
    config : ase.Atoms or ase filter
        Atomic configuration.
    regularization : float, optional
        Diagonal shift :math:`\\varepsilon`. Defaults to
        ``config.REGULARIZATION`` of the global configuration.

    Returns
    -------
    torch.Tensor
        Coalesced sparse COO tensor with shape ``[3N, 3N]``.

    Raises
    ------
    AssemblyError
        If a bond longer than the cutoff is enumerated, or if the stiffness
        evaluation raises or returns non-finite values.

    """
    eps = _config.REGULARIZATION if regularization is None else regularization
    n_dof = 3 * num_atoms(config)

    i, j, r = bonds(config, p.cutoff)
    z = _stiffness(p, i, j, r)

    # One [[z, -z], [-z, z]] block per bond and Cartesian component
    a = atom_to_dofs(i).T.flatten()  # [3 * n_bonds]
    b = atom_to_dofs(j).T.flatten()
    zz = z.repeat(3)
    rows = torch.cat([a, a, b, b])
    cols = torch.cat([a, b, a, b])
    vals = torch.cat([zz, -zz, -zz, zz])

    diag = torch.arange(n_dof, dtype=torch.int64)
    indices = torch.stack([torch.cat([rows, diag]), torch.cat([cols, diag])])
    values = torch.cat([vals, torch.full((n_dof,), eps, dtype=torch.float64)])

    matrix = torch.sparse_coo_tensor(indices, values, (n_dof, n_dof))
    return matrix.to(dtype=_config.DEFAULT_DTYPE, device=_config.DEFAULT_DEVICE).coalesce()
