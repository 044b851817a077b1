"""Global configuration for atomprecon.

This module provides global configuration settings for the atomprecon
library: the tensor dtype and device used for assembled operators, the
default linear solver backend, and the diagonal regularization added to
every assembled operator.

The regularization :math:`\\varepsilon` enters the assembled operator as

.. math::

    P = \\sum_{(i,j)} z_{ij} \\, (e_i - e_j)(e_i - e_j)^T \\otimes I_3
        + \\varepsilon \\, I_{3N}

so that :math:`P` is strictly positive-definite even for configurations
without any bonds.

Example
-------
>>> import atomprecon as ap
>>> print(ap.config.DEFAULT_BACKEND)
amg

>>> # Use the pure-torch CG backend everywhere
>>> ap.config.DEFAULT_BACKEND = "cg"

"""

from typing import Any

import torch


class PreconConfig:
    """Global configuration class for atomprecon.

    Attributes
    ----------
    DEFAULT_DTYPE : torch.dtype
        The floating point type of assembled operators and vectors.
        Defaults to :obj:`torch.float64`.

    DEFAULT_DEVICE : torch.device
        The device assembled operators live on. Defaults to CPU.

    DEFAULT_BACKEND : str
        Name of the solver backend used when a preconditioner is built
        without an explicit ``backend``. Defaults to ``"amg"``.

    REGULARIZATION : float
        Multiple of the identity added to every assembled operator.
        Defaults to ``1e-3``.

    """

    def __init__(self) -> None:
        """Initialize the configuration with default values."""
        self.DEFAULT_DTYPE: Any = torch.float64
        self.DEFAULT_DEVICE: Any = torch.device("cpu")
        self.DEFAULT_BACKEND: str = "amg"
        self.REGULARIZATION: float = 1e-3

    def reset(self) -> None:
        """Reset configuration to default values.

        Example
        -------
        >>> import atomprecon as ap
        >>> ap.config.REGULARIZATION = 1e-2
        >>> ap.config.reset()
        >>> print(ap.config.REGULARIZATION)
        0.001

        """
        self.DEFAULT_DTYPE = torch.float64
        self.DEFAULT_DEVICE = torch.device("cpu")
        self.DEFAULT_BACKEND = "amg"
        self.REGULARIZATION = 1e-3

    def __repr__(self) -> str:
        """Return a string representation of the configuration."""
        return (
            f"PreconConfig(\n"
            f"    DEFAULT_DTYPE={self.DEFAULT_DTYPE},\n"
            f"    DEFAULT_DEVICE={self.DEFAULT_DEVICE},\n"
            f"    DEFAULT_BACKEND={self.DEFAULT_BACKEND!r},\n"
            f"    REGULARIZATION={self.REGULARIZATION}\n"
            f")"
        )


# Global configuration instance
config = PreconConfig()
