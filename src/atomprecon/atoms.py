"""Atomic configuration access.

This module is the only place that reads from :class:`ase.Atoms`. A
configuration is either an :class:`ase.Atoms` object or an ase filter that
wraps one (e.g. :class:`ase.filters.UnitCellFilter`); all helpers operate on
the underlying atoms.

Positions are always returned as fresh ``float64`` torch tensors so that a
snapshot never aliases memory owned by the caller.

Example
-------
>>> from ase.build import bulk
>>> import atomprecon as ap
>>> at = bulk("Cu", cubic=True)
>>> i, j, r = ap.bonds(at, 3.0)
>>> print(r.min())  # nearest-neighbour distance, ~2.55

"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import torch
from ase.neighborlist import neighbor_list

if TYPE_CHECKING:
    from ase import Atoms


def unwrap(config: Any) -> Atoms:
    """Return the :class:`ase.Atoms` underlying a configuration.

    Filters keep the wrapped atoms in their ``atoms`` attribute; plain
    atoms are returned unchanged.

    """
    return getattr(config, "atoms", config)


def num_atoms(config: Any) -> int:
    """Number of atoms in the configuration."""
    return len(unwrap(config))


def positions(config: Any) -> torch.Tensor:
    """Return a copy of the atomic positions.

    Parameters
    ----------
    config : ase.Atoms or ase filter
        The configuration.

    Returns
    -------
    torch.Tensor
        Positions with shape ``[N, 3]`` and dtype ``float64``. The tensor owns
        its memory; mutating the configuration afterwards does not change it.

    """
    return torch.tensor(unwrap(config).get_positions(), dtype=torch.float64)


def chemical_symbols(config: Any) -> list[str]:
    """Chemical symbols of all atoms, in order."""
    return list(unwrap(config).get_chemical_symbols())


def bonds(config: Any, cutoff: float) -> tuple[torch.Tensor, torch.Tensor, torch.Tensor]:
    """Enumerate bonded atom pairs within a cutoff.

    Every bond is reported once, with ``i < j``. Under periodic boundary
    conditions each periodic image of a pair is a separate bond; bonds of an
    atom to its own image are dropped since they do not couple distinct
    degrees of freedom.

    Parameters
    ----------
    config : ase.Atoms or ase filter
        The configuration.
    cutoff : float
        Interaction cutoff radius.

    Returns
    -------
    tuple[torch.Tensor, torch.Tensor, torch.Tensor]
        Atom indices ``i`` and ``j`` (``int64``) and distances ``r``
        (``float64``), each of shape ``[n_bonds]``.

    """
    i, j, r = neighbor_list("ijd", unwrap(config), float(cutoff))
    i = torch.as_tensor(i, dtype=torch.int64)
    j = torch.as_tensor(j, dtype=torch.int64)
    r = torch.as_tensor(r, dtype=torch.float64)

    # The full neighbour list holds (i, j) and (j, i); keep one of each
    keep = i < j
    return i[keep], j[keep], r[keep]
