"""Algebraic multigrid backend.

Wraps a PyAMG Ruge-Stuben hierarchy around the assembled operator. The
operator is copied once into a :class:`scipy.sparse.csr_matrix` when the
solver is built; ``solve`` runs conjugate gradient preconditioned by one
multigrid V-cycle per iteration, to the requested relative tolerance.

The outer iteration is :func:`atomprecon.backends.cg.cg` rather than
``MultilevelSolver.solve(..., accel="cg")``. pyamg only supplies the
hierarchy and its V-cycle (``aspreconditioner``), whose signature is stable
across releases, while the keyword names of pyamg's Krylov accelerators
(``tol`` versus ``rtol``) have changed. Using the package's own CG also gives
all backends the same convergence test and the same non-convergence warning.

Setting up the hierarchy is the expensive part of a preconditioner rebuild,
which is why preconditioners cache their solver between rebuilds.

"""

from __future__ import annotations

import logging

import numpy as np
import pyamg
import scipy.sparse as sp
import torch

from atomprecon.backends import Backend, check_operator, registry
from atomprecon.backends.cg import cg
from atomprecon.exceptions import SolverBuildError

logger = logging.getLogger(__name__)


def to_scipy_csr(matrix: torch.Tensor) -> sp.csr_matrix:
    """Convert a sparse COO torch tensor to a scipy CSR matrix."""
    matrix = matrix.coalesce().cpu()
    rows, cols = matrix.indices().numpy()
    values = matrix.values().to(torch.float64).numpy()
    return sp.coo_matrix((values, (rows, cols)), shape=tuple(matrix.shape)).tocsr()


class AMGSolver:
    """Ruge-Stuben AMG solver bound to a sparse operator.

    Parameters
    ----------
    matrix : torch.Tensor
        Sparse symmetric positive-definite operator of shape ``[n, n]``.
    tol : float
        Relative residual tolerance of :meth:`solve`.
    maxiter : int
        Maximum number of CG iterations (one V-cycle each) per solve.

    Raises
    ------
    SolverBuildError
        If the operator is invalid or PyAMG fails to build a hierarchy.

    """

    def __init__(self, matrix: torch.Tensor, tol: float, maxiter: int = 200) -> None:
        check_operator(matrix)
        self._dtype = matrix.dtype
        self._device = matrix.device
        self._csr = to_scipy_csr(matrix)
        try:
            self._ml = pyamg.ruge_stuben_solver(self._csr)
        except (ValueError, ArithmeticError, RuntimeError) as err:
            msg = f"PyAMG could not build a Ruge-Stuben hierarchy: {err}"
            raise SolverBuildError(msg) from err
        self._M = self._ml.aspreconditioner(cycle="V")
        self.tol = tol
        self.maxiter = maxiter

    @property
    def shape(self) -> tuple[int, int]:
        """Shape of the operator."""
        return self._csr.shape

    @property
    def levels(self) -> int:
        """Number of levels in the multigrid hierarchy."""
        return len(self._ml.levels)

    def _to_torch(self, x: np.ndarray) -> torch.Tensor:
        return torch.as_tensor(np.asarray(x).reshape(-1), dtype=self._dtype, device=self._device)

    def _v_cycle(self, r: torch.Tensor) -> torch.Tensor:
        return self._to_torch(self._M.matvec(r.detach().cpu().numpy()))

    def apply(self, x: torch.Tensor) -> torch.Tensor:
        """Return the operator applied to ``x``."""
        return self._to_torch(self._csr @ x.detach().cpu().numpy())

    def solve(self, b: torch.Tensor) -> torch.Tensor:
        """Solve ``P x = b`` to the configured relative tolerance."""
        x, info = cg(self.apply, b, tol=self.tol, maxiter=self.maxiter, M_apply=self._v_cycle)
        if not info.converged:
            logger.warning(
                "AMG-preconditioned CG did not converge in %d iterations (residual %.3e)",
                info.iters,
                info.final_residual,
            )
        return x


registry.register(Backend.AMG, AMGSolver)
