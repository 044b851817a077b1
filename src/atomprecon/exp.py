"""The Exp preconditioner.

A variant of the universal preconditioner of Packwood et al., where every
bond is weighted by the shifted exponential

.. math::

    z(r) = e^{-A (r / r_0 - 1)} - e^{-A (r_c / r_0 - 1)},
    \\qquad r_c = r_0 \\cdot \\text{cutoff\\_mult}

with :math:`r_0` an estimate of the nearest-neighbour distance.

Reference
---------
D. Packwood, J. Kermode, L. Mones, N. Bernstein, J. Woolley, N. I. M. Gould,
C. Ortner, and G. Csanyi. A universal preconditioner for simulating condensed
phase materials. J. Chem. Phys., 144, 2016.

"""

from __future__ import annotations

from typing import Any

from atomprecon.atoms import chemical_symbols
from atomprecon.backends import Backend
from atomprecon.interactions import ExpInteraction
from atomprecon.precon import AMGPrecon
from atomprecon.species import reference_bond_length


def estimate_rnn(config: Any) -> float:
    """Estimate the nearest-neighbour distance of a configuration.

    Returns the smallest reference bond length over the distinct chemical
    species present.

    Raises
    ------
    ValueError
        If the configuration has no atoms.

    """
    species = sorted(set(chemical_symbols(config)))
    if not species:
        msg = "Cannot estimate a nearest-neighbour distance without atoms."
        raise ValueError(msg)
    return min(reference_bond_length(s) for s in species)


def Exp(
    config: Any,
    A: float = 3.0,
    r0: float | None = None,
    cutoff_mult: float = 2.2,
    tol: float = 1e-7,
    update_freq: int = 10,
    backend: str | Backend | None = None,
) -> AMGPrecon:
    """Build an Exp preconditioner for a configuration.

    Parameters
    ----------
    config : ase.Atoms or ase filter
        Initial configuration; must have a fixed cell.
    A : float
        Stiffness decay rate.
    r0 : float, optional
        Reference bond length. If None, estimated with :func:`estimate_rnn`.
    cutoff_mult : float
        Cutoff radius in units of ``r0``.
    tol : float
        Relative tolerance of the solver.
    update_freq : int
        Maximum number of consecutive skipped rebuilds.
    backend : str or Backend, optional
        Solver backend, see :func:`~atomprecon.backends.build_solver`.

    Returns
    -------
    AMGPrecon
        Preconditioner rebuilt whenever an atom drifts by ``0.2 * r0``.

    Raises
    ------
    ValueError
        If ``A``, ``r0`` or ``cutoff_mult`` are out of range.
    UnsupportedConstraintError
        If ``config`` does not have a fixed cell.

    Example
    -------
    >>> from ase.build import bulk
    >>> import atomprecon as ap
    >>> P = ap.Exp(bulk("Cu", cubic=True) * (3, 3, 3))
    >>> P.p.cutoff  # 2.2 * 3.61 / sqrt(2)
    5.6159...

    """
    if A <= 0:
        msg = f"A must be positive, got {A}."
        raise ValueError(msg)
    if cutoff_mult <= 1:
        msg = f"cutoff_mult must exceed 1, got {cutoff_mult}."
        raise ValueError(msg)
    if r0 is None:
        r0 = estimate_rnn(config)
    if r0 <= 0:
        msg = f"r0 must be positive, got {r0}."
        raise ValueError(msg)

    pot = ExpInteraction(A=A, r0=r0, cutoff=r0 * cutoff_mult)
    return AMGPrecon(
        pot,
        config,
        update_dist=0.2 * r0,
        tol=tol,
        update_freq=update_freq,
        backend=backend,
    )


make_exp = Exp
