"""Exception types raised by atomprecon.

All errors are raised synchronously from the call that triggered them and
are never retried internally: rebuilding with identical inputs is
deterministic and would fail again.

"""


class PreconError(Exception):
    """Base class for all atomprecon errors."""


class UnsupportedConstraintError(PreconError):
    """Raised when a configuration carries a constraint that cannot be projected.

    Only fixed-cell configurations (optionally with frozen atoms) are
    supported. This is a usage error and is raised before any assembly.

    """


class AssemblyError(PreconError):
    """Raised when bond enumeration or stiffness evaluation fails.

    Parameters
    ----------
    msg : str
        Description of the failure.
    bond : tuple[int, int, float], optional
        The offending ``(i, j, r)`` bond, if known.

    """

    def __init__(self, msg: str, bond: tuple[int, int, float] | None = None) -> None:
        self.bond = bond
        super().__init__(msg)


class SolverBuildError(PreconError):
    """Raised by a solver backend that cannot build a solver for an operator."""


class BackendNotAvailableError(PreconError):
    """Raised when a requested backend is not available.

    Parameters
    ----------
    backend : object
        The backend that was requested but not available.

    """

    def __init__(self, backend: object) -> None:
        self.backend = backend
        name = getattr(backend, "name", backend)
        super().__init__(f"Backend '{name}' is not available.")
