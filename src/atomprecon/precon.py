"""Cached sparse preconditioner for geometry relaxation.

:class:`AMGPrecon` owns an assembled preconditioner matrix and a solver
built from it, and decides when they have gone stale as atoms move.

The caller drives it in a loop:

.. code-block:: python

    P = AMGPrecon(interaction, atoms)
    while not converged:
        P.update(atoms)               # rebuilds only when stale
        step = P.solve(forces)        # preconditioned search direction
        ...

A rebuild runs

1. :func:`~atomprecon.interactions.refresh_interaction` on the interaction,
2. :func:`~atomprecon.assembly.assemble` for the new configuration,
3. :func:`~atomprecon.constraints.project` through the configuration's
   constraint,
4. :func:`~atomprecon.backends.build_solver` on the projected matrix,

and only after all four succeed commits the new interaction, matrix, solver
and position snapshot together and resets the skipped-update counter. A
failure at any step propagates to the caller and leaves the previous state
untouched.

"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Any

import torch

from atomprecon.assembly import assemble
from atomprecon.atoms import positions
from atomprecon.backends import Backend, build_solver
from atomprecon.constraints import FixedCell, constraint, project
from atomprecon.exceptions import UnsupportedConstraintError
from atomprecon.interactions import refresh_interaction
from atomprecon.staleness import max_displacement, needs_rebuild

if TYPE_CHECKING:
    from atomprecon.backends import LinearSolver

logger = logging.getLogger(__name__)


class AMGPrecon:
    """Preconditioner with a staleness-triggered rebuild policy.

    The preconditioner matrix is determined by an interaction ``p`` through
    :func:`~atomprecon.assembly.assemble`. It is rebuilt by :meth:`update`
    when more than ``update_freq`` updates in a row have been skipped, or
    when some atom has moved by at least ``update_dist`` since the last
    rebuild.

    Parameters
    ----------
    p : PairInteraction
        Interaction law used to assemble the matrix. Owned by the
        preconditioner from here on.
    config : ase.Atoms or ase filter
        Initial configuration; must have a fixed cell.
    update_dist : float
        Drift threshold triggering a rebuild.
    tol : float
        Relative tolerance of :meth:`solve`.
    update_freq : int
        Maximum number of consecutive skipped rebuilds.
    backend : str or Backend, optional
        Solver backend. Defaults to ``config.DEFAULT_BACKEND`` of the global
        configuration at each rebuild.

    Raises
    ------
    UnsupportedConstraintError
        If ``config`` is not a fixed-cell configuration. Raised before any
        assembly is attempted.
    ValueError
        If a parameter is out of range.

    Example
    -------
    >>> from ase.build import bulk
    >>> import atomprecon as ap
    >>> at = bulk("Al", cubic=True) * (2, 2, 2)
    >>> law = ap.ExpInteraction(A=3.0, r0=2.86, cutoff=6.3)
    >>> P = ap.AMGPrecon(law, at, update_dist=0.5)
    >>> P.matrix.shape
    torch.Size([96, 96])

    """

    def __init__(
        self,
        p: Any,
        config: Any,
        update_dist: float = 0.3,
        tol: float = 1e-7,
        update_freq: int = 10,
        backend: str | Backend | None = None,
    ) -> None:
        if update_dist <= 0:
            msg = f"update_dist must be positive, got {update_dist}."
            raise ValueError(msg)
        if tol <= 0:
            msg = f"tol must be positive, got {tol}."
            raise ValueError(msg)
        if update_freq < 0:
            msg = f"update_freq must be non-negative, got {update_freq}."
            raise ValueError(msg)

        c = constraint(config)
        if not isinstance(c, FixedCell):
            msg = f"AMGPrecon requires a fixed-cell configuration, got {c!r}."
            raise UnsupportedConstraintError(msg)

        self.update_dist = float(update_dist)
        self.tol = float(tol)
        self.update_freq = int(update_freq)
        self._backend = None if backend is None else Backend.parse(backend)

        self._p = p
        self._matrix: torch.Tensor | None = None
        self._solver: LinearSolver | None = None
        self._old_positions = positions(config)
        self._skipped_updates = 0
        self._num_builds = 0

        self.force_update(config)

    @property
    def p(self) -> Any:
        """The interaction the current matrix was assembled from."""
        return self._p

    @property
    def matrix(self) -> torch.Tensor:
        """The current projected sparse preconditioner matrix."""
        return self._matrix

    @property
    def solver(self) -> LinearSolver:
        """The solver built from :attr:`matrix`."""
        return self._solver

    @property
    def backend(self) -> Backend | None:
        """Requested solver backend, or None to follow the global default."""
        return self._backend

    @property
    def old_positions(self) -> torch.Tensor:
        """Copy of the positions at the last rebuild, shape ``[N, 3]``."""
        return self._old_positions.clone()

    @property
    def skipped_updates(self) -> int:
        """Number of :meth:`update` calls since the last rebuild."""
        return self._skipped_updates

    @property
    def num_builds(self) -> int:
        """Number of rebuilds performed, including the initial one."""
        return self._num_builds

    @property
    def shape(self) -> tuple[int, int]:
        """Shape of the preconditioner matrix."""
        return tuple(self._matrix.shape)

    def need_update(self, config: Any) -> bool:
        """Whether :meth:`update` would rebuild for ``config``."""
        return needs_rebuild(self, config)

    def update(self, config: Any) -> AMGPrecon:
        """Rebuild if stale, otherwise count a skipped update.

        Returns
        -------
        AMGPrecon
            ``self``, always in a usable state.

        """
        if self.need_update(config):
            return self.force_update(config)
        self._skipped_updates += 1
        logger.debug("Skipped preconditioner update (%d in a row)", self._skipped_updates)
        return self

    def force_update(self, config: Any) -> AMGPrecon:
        """Rebuild matrix and solver for ``config`` unconditionally.

        Returns
        -------
        AMGPrecon
            ``self``.

        Raises
        ------
        AssemblyError
            If the matrix cannot be assembled.
        UnsupportedConstraintError
            If the configuration's constraint cannot be projected.
        SolverBuildError
            If the backend cannot build a solver for the projected matrix.

        """
        X = positions(config)
        if logger.isEnabledFor(logging.DEBUG) and self._num_builds > 0:
            logger.debug(
                "Rebuilding preconditioner: drift %.4f (threshold %.4f), %d skipped updates",
                max_displacement(X, self._old_positions),
                self.update_dist,
                self._skipped_updates,
            )

        p = refresh_interaction(self._p, config)

        start = time.perf_counter()
        matrix = project(constraint(config), assemble(p, config))
        logger.debug(
            "Assembled %dx%d matrix with %d entries in %.3f s",
            *matrix.shape,
            matrix.values().numel(),
            time.perf_counter() - start,
        )

        start = time.perf_counter()
        solver = build_solver(matrix, self.tol, self._backend)
        logger.debug("Built %s in %.3f s", type(solver).__name__, time.perf_counter() - start)

        self._p = p
        self._matrix = matrix
        self._solver = solver
        self._old_positions = X
        self._skipped_updates = 0
        self._num_builds += 1
        return self

    def _as_dofs(self, x: Any) -> torch.Tensor:
        x = torch.as_tensor(x, dtype=self._matrix.dtype, device=self._matrix.device)
        if x.numel() != self._matrix.shape[0]:
            msg = (
                f"Expected a vector with {self._matrix.shape[0]} entries "
                f"({self._matrix.shape[0] // 3} atoms), got shape {tuple(x.shape)}."
            )
            raise ValueError(msg)
        return x.reshape(-1)

    def apply(self, x: Any) -> torch.Tensor:
        """Apply the preconditioner matrix, :math:`P x`.

        Parameters
        ----------
        x : array_like
            Vector of shape ``[3N]`` or ``[N, 3]``.

        Returns
        -------
        torch.Tensor
            :math:`P x` with the shape of ``x``.

        """
        shape = torch.as_tensor(x).shape
        return self._solver.apply(self._as_dofs(x)).reshape(shape)

    def solve(self, x: Any) -> torch.Tensor:
        """Apply the inverse preconditioner, :math:`P^{-1} x`.

        This is the preconditioning step: for forces ``f`` it returns the
        preconditioned search direction.

        Parameters
        ----------
        x : array_like
            Vector of shape ``[3N]`` or ``[N, 3]``.

        Returns
        -------
        torch.Tensor
            Approximation of :math:`P^{-1} x` with the shape of ``x``.

        """
        shape = torch.as_tensor(x).shape
        return self._solver.solve(self._as_dofs(x)).reshape(shape)

    def __len__(self) -> int:
        """Number of atoms the preconditioner was built for."""
        return self._matrix.shape[0] // 3

    def __repr__(self) -> str:
        """Return a string representation of the preconditioner."""
        return (
            f"AMGPrecon(p={self._p!r}, n_atoms={len(self)}, "
            f"update_dist={self.update_dist}, tol={self.tol}, "
            f"update_freq={self.update_freq}, skipped_updates={self._skipped_updates})"
        )


