"""Linear solver backends for preconditioner operators.

A backend turns an assembled sparse operator into a solver object exposing

- ``apply(x)``: the matrix-vector product :math:`P x`
- ``solve(b)``: an approximation of :math:`P^{-1} b`

Solvers are immutable: a new operator always gets a new solver.

Available backends:

- **AMG**: algebraic multigrid (Ruge-Stuben) via PyAMG; the default.
- **CG**: Jacobi-preconditioned conjugate gradient in pure torch.
- **DIRECT**: dense Cholesky factorisation, for small systems.

Example
-------
>>> from atomprecon.backends import Backend, build_solver, registry
>>> registry.is_available(Backend.CG)
True
>>> solver = build_solver(matrix, tol=1e-8, backend="cg")
>>> x = solver.solve(b)

"""

from __future__ import annotations

import logging
from enum import Enum, auto
from typing import TYPE_CHECKING, Any, Protocol

import torch

from atomprecon.config import config as _config
from atomprecon.exceptions import BackendNotAvailableError, SolverBuildError

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)


class Backend(Enum):
    """Available solver backends.

    Attributes
    ----------
    AMG : auto
        Algebraic multigrid through PyAMG.
    CG : auto
        Native torch conjugate gradient.
    DIRECT : auto
        Dense Cholesky factorisation.

    """

    AMG = auto()
    CG = auto()
    DIRECT = auto()

    @classmethod
    def parse(cls, backend: str | Backend) -> Backend:
        """Convert a backend name such as ``"amg"`` to a :class:`Backend`.

        Raises
        ------
        BackendNotAvailableError
            If no backend has that name.

        """
        if isinstance(backend, cls):
            return backend
        try:
            return cls[str(backend).upper()]
        except KeyError:
            raise BackendNotAvailableError(backend) from None


class LinearSolver(Protocol):
    """Interface of the solver objects built by backends."""

    @property
    def shape(self) -> tuple[int, int]:
        """Shape of the operator."""
        ...

    def apply(self, x: torch.Tensor) -> torch.Tensor:
        """Return the operator applied to ``x``."""
        ...

    def solve(self, b: torch.Tensor) -> torch.Tensor:
        """Return an approximate solution ``x`` of ``P x = b``."""
        ...


class BackendRegistry:
    """Registry for solver builders.

    A builder is called as ``builder(matrix, tol)`` and returns a
    :class:`LinearSolver`.

    Example
    -------
    >>> registry = BackendRegistry()
    >>> registry.register(Backend.CG, CGSolver)
    >>> registry.is_available(Backend.CG)
    True
    >>> builder = registry.get(Backend.CG)

    """

    def __init__(self) -> None:
        self._builders: dict[Backend, Callable[..., Any]] = {}

    def register(self, backend: Backend, builder: Callable[..., Any]) -> None:
        """Register a solver builder for a backend.

        Parameters
        ----------
        backend : Backend
            The backend to register.
        builder : Callable
            Called as ``builder(matrix, tol)``.

        """
        logger.debug("Registering solver backend %s", backend.name)
        self._builders[backend] = builder

    def get(self, backend: Backend) -> Callable[..., Any]:
        """Get the solver builder for a backend.

        Raises
        ------
        BackendNotAvailableError
            If the requested backend is not registered.

        """
        if backend not in self._builders:
            raise BackendNotAvailableError(backend)
        return self._builders[backend]

    def is_available(self, backend: Backend) -> bool:
        """Check if a backend is registered."""
        return backend in self._builders


# Module-level registry instance
registry = BackendRegistry()


def check_operator(matrix: torch.Tensor) -> None:
    """Validate an operator before building a solver for it.

    Raises
    ------
    SolverBuildError
        If ``matrix`` is not a square 2-D tensor with finite entries.

    """
    if matrix.dim() != 2 or matrix.shape[0] != matrix.shape[1]:
        msg = f"Operator must be square, got shape {tuple(matrix.shape)}."
        raise SolverBuildError(msg)
    values = matrix.coalesce().values() if matrix.is_sparse else matrix
    if not torch.isfinite(values).all():
        msg = "Operator has non-finite entries."
        raise SolverBuildError(msg)


def sparse_diagonal(matrix: torch.Tensor) -> torch.Tensor:
    """Return the diagonal of a sparse COO matrix as a dense vector."""
    matrix = matrix.coalesce()
    rows, cols = matrix.indices()
    on_diag = rows == cols
    diag = torch.zeros(matrix.shape[0], dtype=matrix.dtype, device=matrix.device)
    return diag.index_add_(0, rows[on_diag], matrix.values()[on_diag])


def build_solver(
    matrix: torch.Tensor,
    tol: float,
    backend: str | Backend | None = None,
) -> LinearSolver:
    """Build a solver for ``matrix`` with the requested backend.

    Parameters
    ----------
    matrix : torch.Tensor
        Sparse symmetric positive-definite operator.
    tol : float
        Relative tolerance of ``solve``.
    backend : str or Backend, optional
        Backend to use. Defaults to ``config.DEFAULT_BACKEND``.

    Returns
    -------
    LinearSolver
        Solver bound to ``matrix``.

    Raises
    ------
    BackendNotAvailableError
        If the backend is unknown or not registered.
    SolverBuildError
        If the backend cannot build a solver for ``matrix``.

    """
    selected = Backend.parse(_config.DEFAULT_BACKEND if backend is None else backend)
    return registry.get(selected)(matrix, tol)


# Register the shipped backends
from atomprecon.backends import amg, cg, direct  # noqa: E402, F401

__all__ = [
    "Backend",
    "BackendNotAvailableError",
    "BackendRegistry",
    "LinearSolver",
    "SolverBuildError",
    "build_solver",
    "check_operator",
    "registry",
    "sparse_diagonal",
]
