"""Tests for the solver backend layer."""

import pytest
import torch

import atomprecon as ap
from atomprecon.backends import (
    Backend,
    BackendNotAvailableError,
    BackendRegistry,
    SolverBuildError,
    build_solver,
    check_operator,
    registry,
    sparse_diagonal,
)
from atomprecon.backends.amg import AMGSolver, to_scipy_csr
from atomprecon.backends.cg import CGSolver, cg
from atomprecon.backends.direct import CholeskySolver


def diagonal_operator(values: list[float]) -> torch.Tensor:
    """Sparse diagonal matrix with the given entries."""
    n = len(values)
    idx = torch.arange(n).repeat(2, 1)
    return torch.sparse_coo_tensor(idx, torch.tensor(values, dtype=torch.float64), (n, n))


class TestBackendRegistry:
    """Test backend registry functionality."""

    def test_shipped_backends_available(self) -> None:
        """Verify every shipped backend is registered on import."""
        for backend in Backend:
            assert registry.is_available(backend)
            assert callable(registry.get(backend))

    def test_builders(self) -> None:
        """Verify the registered builder classes."""
        assert registry.get(Backend.AMG) is AMGSolver
        assert registry.get(Backend.CG) is CGSolver
        assert registry.get(Backend.DIRECT) is CholeskySolver


class TestBackendRegistryUnit:
    """Unit tests for BackendRegistry class."""

    def test_register_and_get(self) -> None:
        """Test registering and retrieving a builder."""
        test_registry = BackendRegistry()

        def dummy_builder(matrix, tol) -> str:
            return "dummy"

        test_registry.register(Backend.CG, dummy_builder)
        assert test_registry.get(Backend.CG) is dummy_builder

    def test_is_available_false_when_not_registered(self) -> None:
        """Test is_available returns False for unregistered backends."""
        test_registry = BackendRegistry()
        assert test_registry.is_available(Backend.AMG) is False
        assert test_registry.is_available(Backend.DIRECT) is False

    def test_get_unregistered_raises(self) -> None:
        """Test that a missing backend raises BackendNotAvailableError."""
        test_registry = BackendRegistry()
        with pytest.raises(BackendNotAvailableError) as exc_info:
            test_registry.get(Backend.AMG)

        assert exc_info.value.backend == Backend.AMG
        assert "AMG" in str(exc_info.value)


class TestBackendParse:
    """Test backend name parsing."""

    @pytest.mark.parametrize(
        ("name", "expected"),
        [("amg", Backend.AMG), ("CG", Backend.CG), ("Direct", Backend.DIRECT)],
    )
    def test_names(self, name, expected) -> None:
        """Test case-insensitive names."""
        assert Backend.parse(name) is expected

    def test_enum_passthrough(self) -> None:
        """Test that members are returned unchanged."""
        assert Backend.parse(Backend.CG) is Backend.CG

    def test_unknown_name(self) -> None:
        """Test that unknown names raise BackendNotAvailableError."""
        with pytest.raises(BackendNotAvailableError, match="petsc"):
            Backend.parse("petsc")

    def test_default_backend_from_config(self) -> None:
        """Test that build_solver follows config.DEFAULT_BACKEND."""
        matrix = diagonal_operator([1.0, 2.0])
        assert isinstance(build_solver(matrix, 1e-8), AMGSolver)

        ap.config.DEFAULT_BACKEND = "cg"
        assert isinstance(build_solver(matrix, 1e-8), CGSolver)


class TestOperatorChecks:
    """Test operator validation."""

    def test_non_square(self) -> None:
        """Test that a non-square operator is rejected."""
        with pytest.raises(SolverBuildError):
            check_operator(torch.zeros(2, 3, dtype=torch.float64))

    def test_non_finite(self) -> None:
        """Test that non-finite entries are rejected."""
        with pytest.raises(SolverBuildError):
            check_operator(diagonal_operator([1.0, float("inf")]))

    def test_sparse_diagonal(self) -> None:
        """Test diagonal extraction with duplicate entries."""
        idx = torch.tensor([[0, 0, 1, 1], [0, 0, 1, 0]])
        vals = torch.tensor([1.0, 2.0, 5.0, 7.0], dtype=torch.float64)
        matrix = torch.sparse_coo_tensor(idx, vals, (2, 2))
        assert sparse_diagonal(matrix).tolist() == [3.0, 5.0]

    def test_to_scipy_csr(self, law, dimer) -> None:
        """Test the conversion to scipy CSR."""
        matrix = ap.assemble(law, dimer)
        csr = to_scipy_csr(matrix)
        assert csr.shape == (6, 6)
        torch.testing.assert_close(torch.from_numpy(csr.toarray()), matrix.to_dense())


class TestSolvers:
    """Test the solvers built by every backend."""

    def test_solve_matches_dense(self, backend, law, crystal) -> None:
        """Test solve against a dense reference solution."""
        matrix = ap.assemble(law, crystal)
        solver = build_solver(matrix, 1e-10, backend)

        torch.manual_seed(0)
        b = torch.randn(96, dtype=torch.float64)
        x_dense = torch.linalg.solve(matrix.to_dense(), b)
        x = solver.solve(b)

        residual = (torch.linalg.norm(solver.apply(x) - b) / torch.linalg.norm(b)).item()
        assert residual < 1e-8, f"Residual too large: {residual}"
        assert x.dtype == torch.float64
        assert x.shape == b.shape
        assert torch.allclose(x, x_dense, rtol=1e-4, atol=1e-6)

    def test_apply_matches_matrix(self, backend, law, crystal) -> None:
        """Test apply against the dense matrix-vector product."""
        matrix = ap.assemble(law, crystal)
        solver = build_solver(matrix, 1e-8, backend)

        torch.manual_seed(1)
        x = torch.randn(96, dtype=torch.float64)
        torch.testing.assert_close(solver.apply(x), matrix.to_dense() @ x)
        assert solver.shape == (96, 96)

    def test_scaled_identity(self, backend) -> None:
        """Test that eps * I is inverted exactly."""
        matrix = diagonal_operator([1e-3] * 6)
        solver = build_solver(matrix, 1e-10, backend)
        b = torch.arange(1.0, 7.0, dtype=torch.float64)
        torch.testing.assert_close(solver.solve(b), b / 1e-3)

    def test_direct_rejects_indefinite(self) -> None:
        """Test that Cholesky fails on an indefinite operator."""
        with pytest.raises(SolverBuildError):
            CholeskySolver(diagonal_operator([1.0, -1.0]))

    def test_cg_rejects_zero_diagonal(self) -> None:
        """Test that Jacobi preconditioning needs a positive diagonal."""
        with pytest.raises(SolverBuildError):
            CGSolver(diagonal_operator([1.0, 0.0]), tol=1e-8)

    def test_amg_hierarchy(self, law) -> None:
        """Test that AMG builds a multilevel hierarchy on a larger system."""
        from ase.build import bulk

        atoms = bulk("Cu", cubic=True) * (4, 4, 4)
        solver = AMGSolver(ap.assemble(law, atoms), tol=1e-8)
        assert solver.levels >= 2


class TestCG:
    """Test the conjugate gradient iteration."""

    @staticmethod
    def spd_matrix(n: int = 20) -> torch.Tensor:
        torch.manual_seed(42)
        Q = torch.randn(n, n, dtype=torch.float64)
        return Q @ Q.T + n * torch.eye(n, dtype=torch.float64)

    def test_converges_to_dense_solution(self) -> None:
        """Test CG matches torch.linalg.solve."""
        A = self.spd_matrix()
        b = torch.ones(20, dtype=torch.float64)
        x, info = cg(lambda v: A @ v, b, tol=1e-12)

        assert info.converged, f"CG did not converge: {info}"
        assert torch.allclose(x, torch.linalg.solve(A, b), rtol=1e-9, atol=1e-10)

    def test_preconditioned(self) -> None:
        """Test Jacobi-preconditioned CG."""
        A = self.spd_matrix()
        d = torch.diagonal(A)
        b = torch.ones(20, dtype=torch.float64)
        x, info = cg(lambda v: A @ v, b, tol=1e-12, M_apply=lambda r: r / d)

        assert info.converged
        assert torch.allclose(x, torch.linalg.solve(A, b), rtol=1e-9, atol=1e-10)

    def test_zero_rhs(self) -> None:
        """Test that b = 0 returns x = 0 without iterating."""
        x, info = cg(lambda v: 2.0 * v, torch.zeros(5, dtype=torch.float64))
        assert info.converged
        assert info.iters == 0
        assert (x == 0).all()

    def test_iteration_cap(self) -> None:
        """Test that hitting maxiter reports non-convergence."""
        A = self.spd_matrix()
        b = torch.ones(20, dtype=torch.float64)
        _, info = cg(lambda v: A @ v, b, tol=1e-14, maxiter=2)
        assert not info.converged
        assert info.iters == 2

    def test_scaled_identity_one_iteration(self) -> None:
        """Test that a scaled identity is solved in one step from x = 0."""
        b = torch.tensor([1.0, -2.0, 3.0], dtype=torch.float64)
        x, info = cg(lambda v: 2.0 * v, b)

        assert info.converged
        assert info.iters == 1
        torch.testing.assert_close(x, b / 2.0)
