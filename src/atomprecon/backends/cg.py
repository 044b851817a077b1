"""Conjugate Gradient backend.

This module implements the preconditioned Conjugate Gradient (CG) method for
symmetric positive-definite systems :math:`A x = b`, and the
:class:`CGSolver` backend built on it.

Algorithm
---------
With a preconditioner :math:`M \\approx A^{-1}`:

.. math::

    x_0 &= 0, \\quad r_0 = b, \\quad z_0 = M r_0, \\quad p_0 = z_0 \\\\
    \\alpha_k &= \\frac{(r_k, z_k)}{(p_k, A p_k)} \\\\
    x_{k+1} &= x_k + \\alpha_k p_k \\\\
    r_{k+1} &= r_k - \\alpha_k A p_k \\\\
    z_{k+1} &= M r_{k+1} \\\\
    \\beta_k &= \\frac{(r_{k+1}, z_{k+1})}{(r_k, z_k)} \\\\
    p_{k+1} &= z_{k+1} + \\beta_k p_k

iterated until :math:`\\|r_k\\| / \\|b\\| < \\text{tol}`.

:class:`CGSolver` uses the Jacobi preconditioner :math:`M = \\text{diag}(A)^{-1}`,
which is cheap and effective for the diagonally dominant operators produced
by the assembly.

Example
-------
>>> import torch
>>> def A_apply(x):
...     return 2.0 * x
>>> b = torch.randn(100, dtype=torch.float64)
>>> x, info = cg(A_apply, b, tol=1e-10)
>>> print(f"Converged: {info.converged}, iters: {info.iters}")

"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass

import torch

from atomprecon.backends import Backend, check_operator, registry, sparse_diagonal
from atomprecon.exceptions import SolverBuildError

logger = logging.getLogger(__name__)


@dataclass
class CGInfo:
    """Information about CG solver convergence.

    Attributes
    ----------
    converged : bool
        Whether the solver converged within tolerance.
    iters : int
        Number of iterations performed.
    final_residual : float
        Final relative residual norm ||r|| / ||b||.

    """

    converged: bool
    iters: int
    final_residual: float


def cg(
    A_apply: Callable[[torch.Tensor], torch.Tensor],
    b: torch.Tensor,
    tol: float = 1e-10,
    maxiter: int = 1000,
    M_apply: Callable[[torch.Tensor], torch.Tensor] | None = None,
) -> tuple[torch.Tensor, CGInfo]:
    """Preconditioned Conjugate Gradient for symmetric positive-definite systems.

    Parameters
    ----------
    A_apply : Callable[[torch.Tensor], torch.Tensor]
        Function that computes the matrix-vector product A @ x.
        Must preserve shape and dtype.
    b : torch.Tensor
        Right-hand side vector.
    tol : float
        Relative tolerance for convergence: ||r|| / ||b|| < tol.
    maxiter : int
        Maximum number of iterations.
    M_apply : Callable[[torch.Tensor], torch.Tensor], optional
        Preconditioner, approximating the action of A^{-1}. If None, no
        preconditioning is applied.

    Returns
    -------
    tuple[torch.Tensor, CGInfo]
        Solution vector x and convergence information.

    """
    b_norm = torch.linalg.norm(b.flatten()).item()

    if b_norm < 1e-300:
        # b = 0 implies x = 0
        return torch.zeros_like(b), CGInfo(converged=True, iters=0, final_residual=0.0)

    # Start from x = 0, so the initial residual is b
    x = torch.zeros_like(b)
    r = b.clone()

    z = r if M_apply is None else M_apply(r)
    p = z.clone()
    rz = torch.dot(r.flatten(), z.flatten())

    converged = False
    final_residual = torch.linalg.norm(r.flatten()).item() / b_norm
    iters = 0

    for _k in range(maxiter):
        if final_residual < tol:
            converged = True
            break
        iters = _k + 1

        Ap = A_apply(p)
        pAp = torch.dot(p.flatten(), Ap.flatten())
        if pAp.abs() < 1e-300:
            # Breakdown: A is not positive definite or numerical issues
            break

        alpha = rz / pAp
        x = x + alpha * p

        r = r - alpha * Ap
        final_residual = torch.linalg.norm(r.flatten()).item() / b_norm

        z = r if M_apply is None else M_apply(r)
        rz_new = torch.dot(r.flatten(), z.flatten())
        beta = rz_new / rz
        p = z + beta * p
        rz = rz_new
    else:
        converged = final_residual < tol

    return x, CGInfo(converged=converged, iters=iters, final_residual=final_residual)


class CGSolver:
    """Jacobi-preconditioned CG solver bound to a sparse operator.

    Parameters
    ----------
    matrix : torch.Tensor
        Sparse symmetric positive-definite operator of shape ``[n, n]``.
    tol : float
        Relative residual tolerance of :meth:`solve`.
    maxiter : int, optional
        Iteration cap of :meth:`solve`. Defaults to ``max(100, 10 * n)``.

    Raises
    ------
    SolverBuildError
        If the operator is not square, has non-finite entries, or has a
        non-positive diagonal entry.

    """

    def __init__(self, matrix: torch.Tensor, tol: float, maxiter: int | None = None) -> None:
        check_operator(matrix)
        self._matrix = matrix.coalesce()
        self._diag = sparse_diagonal(self._matrix)
        if not (self._diag > 0).all():
            msg = "CG backend requires a strictly positive diagonal."
            raise SolverBuildError(msg)
        self.tol = tol
        self.maxiter = max(100, 10 * self._matrix.shape[0]) if maxiter is None else maxiter

    @property
    def shape(self) -> tuple[int, int]:
        """Shape of the operator."""
        return tuple(self._matrix.shape)

    def apply(self, x: torch.Tensor) -> torch.Tensor:
        """Return the operator applied to ``x``."""
        return torch.sparse.mm(self._matrix, x.unsqueeze(-1)).squeeze(-1)

    def solve(self, b: torch.Tensor) -> torch.Tensor:
        """Solve ``P x = b`` to the configured relative tolerance."""
        x, info = cg(
            self.apply,
            b,
            tol=self.tol,
            maxiter=self.maxiter,
            M_apply=lambda r: r / self._diag,
        )
        if not info.converged:
            logger.warning(
                "CG did not converge in %d iterations (residual %.3e)",
                info.iters,
                info.final_residual,
            )
        return x


registry.register(Backend.CG, CGSolver)
