"""Direct (Cholesky) backend.

Factorises the operator densely with :func:`torch.linalg.cholesky_ex` when the
solver is built; ``solve`` is then exact up to rounding. Memory grows as
:math:`(3N)^2`, so this backend is meant for small systems and for testing.

"""

from __future__ import annotations

import torch

from atomprecon.backends import Backend, check_operator, registry
from atomprecon.exceptions import SolverBuildError


class CholeskySolver:
    """Dense Cholesky solver bound to an operator.

    Parameters
    ----------
    matrix : torch.Tensor
        Sparse or dense symmetric positive-definite operator.
    tol : float
        Unused; accepted for interface compatibility.

    Raises
    ------
    SolverBuildError
        If the operator is invalid or not positive-definite.

    """

    def __init__(self, matrix: torch.Tensor, tol: float = 0.0) -> None:
        check_operator(matrix)
        self._matrix = matrix.coalesce() if matrix.is_sparse else matrix
        dense = self._matrix.to_dense() if matrix.is_sparse else matrix
        L, info = torch.linalg.cholesky_ex(dense)
        if info.item() != 0:
            msg = f"Operator is not positive-definite (leading minor {info.item()} fails)."
            raise SolverBuildError(msg)
        self._L = L
        self.tol = tol

    @property
    def shape(self) -> tuple[int, int]:
        """Shape of the operator."""
        return tuple(self._L.shape)

    def apply(self, x: torch.Tensor) -> torch.Tensor:
        """Return the operator applied to ``x``."""
        if self._matrix.is_sparse:
            return torch.sparse.mm(self._matrix, x.unsqueeze(-1)).squeeze(-1)
        return self._matrix @ x

    def solve(self, b: torch.Tensor) -> torch.Tensor:
        """Solve ``P x = b`` by forward and back substitution."""
        return torch.cholesky_solve(b.unsqueeze(-1), self._L).squeeze(-1)


registry.register(Backend.DIRECT, CholeskySolver)
