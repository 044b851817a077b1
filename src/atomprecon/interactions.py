"""Pairwise interaction laws used to weight preconditioner bonds.

A preconditioner is built from a scalar *stiffness* assigned to every bond.
Any object satisfying the :class:`PairInteraction` protocol can provide it:

- ``cutoff``: bonds longer than this are ignored
- ``evaluate(r)``: stiffness for a tensor of bond lengths
- ``evaluate_derivative(r)``: its derivative with respect to ``r``

Two implementations ship with the package:

- :class:`ExpInteraction`: the shifted exponential law of the Exp
  preconditioner,

  .. math::

      z(r) = e^{-A (r / r_0 - 1)} - e^{-A (r_c / r_0 - 1)}

  which vanishes at the cutoff :math:`r_c`.
- :class:`AnalyticInteraction`: wraps arbitrary elementwise torch callables.

Interaction parameters may be recalibrated on every rebuild through the
:func:`refresh_interaction` hook, which is the identity unless an overload
is registered for the interaction type.

Example
-------
>>> import torch
>>> import atomprecon as ap
>>> law = ap.ExpInteraction(A=3.0, r0=2.5, cutoff=5.5)
>>> law.evaluate(torch.tensor([2.5, 5.5], dtype=torch.float64))
tensor([0.9727, 0.0000], dtype=torch.float64)

"""

from __future__ import annotations

import math
from collections.abc import Callable
from dataclasses import dataclass
from functools import singledispatch
from typing import Any, Protocol, runtime_checkable

import torch


@runtime_checkable
class PairInteraction(Protocol):
    """Capability interface of a pairwise stiffness law."""

    cutoff: float

    def evaluate(self, r: torch.Tensor) -> torch.Tensor:
        """Return the stiffness for each bond length in ``r``."""
        ...

    def evaluate_derivative(self, r: torch.Tensor) -> torch.Tensor:
        """Return the derivative of the stiffness for each bond length in ``r``."""
        ...


@dataclass
class AnalyticInteraction:
    """Pair interaction given by elementwise torch functions.

    Attributes
    ----------
    fn : Callable[[torch.Tensor], torch.Tensor]
        Stiffness as a function of bond length.
    cutoff : float
        Cutoff radius.
    dfn : Callable[[torch.Tensor], torch.Tensor], optional
        Derivative of ``fn``. If None, the derivative is obtained by
        automatic differentiation of ``fn``.

    Example
    -------
    >>> law = AnalyticInteraction(lambda r: 1.0 / r**2, cutoff=4.0)
    >>> law.evaluate_derivative(torch.tensor([1.0], dtype=torch.float64))
    tensor([-2.], dtype=torch.float64)

    """

    fn: Callable[[torch.Tensor], torch.Tensor]
    cutoff: float
    dfn: Callable[[torch.Tensor], torch.Tensor] | None = None

    def evaluate(self, r: torch.Tensor) -> torch.Tensor:
        """Evaluate the stiffness law."""
        return self.fn(r)

    def evaluate_derivative(self, r: torch.Tensor) -> torch.Tensor:
        """Evaluate the derivative of the stiffness law."""
        if self.dfn is not None:
            return self.dfn(r)

        r = r.detach().clone().requires_grad_(True)
        with torch.enable_grad():
            z = self.fn(r)
            (dz,) = torch.autograd.grad(z.sum(), r)
        return dz


@dataclass
class ExpInteraction:
    """Shifted exponential stiffness law.

    Attributes
    ----------
    A : float
        Stiffness decay rate.
    r0 : float
        Reference bond length; the unshifted law equals one at ``r0``.
    cutoff : float
        Cutoff radius; the shifted law vanishes there.

    """

    A: float
    r0: float
    cutoff: float

    @property
    def shift(self) -> float:
        """Value of the unshifted law at the cutoff."""
        return math.exp(-self.A * (self.cutoff / self.r0 - 1.0))

    def evaluate(self, r: torch.Tensor) -> torch.Tensor:
        """Evaluate :math:`e^{-A (r/r_0 - 1)} - e^{-A (r_c/r_0 - 1)}`."""
        return torch.exp(-self.A * (r / self.r0 - 1.0)) - self.shift

    def evaluate_derivative(self, r: torch.Tensor) -> torch.Tensor:
        """Evaluate :math:`-\\frac{A}{r_0} e^{-A (r/r_0 - 1)}`."""
        return -(self.A / self.r0) * torch.exp(-self.A * (r / self.r0 - 1.0))


@singledispatch
def refresh_interaction(p: Any, config: Any) -> Any:
    """Update interaction parameters before a preconditioner rebuild.

    The default implementation returns ``p`` unchanged. Interaction types that
    need per-configuration recalibration register an overload:

    .. code-block:: python

        @refresh_interaction.register
        def _(p: MyInteraction, config) -> MyInteraction:
            return dataclasses.replace(p, r0=estimate_rnn(config))

    Parameters
    ----------
    p : Any
        Current interaction parameters.
    config : ase.Atoms or ase filter
        Configuration the preconditioner is being rebuilt for.

    Returns
    -------
    Any
        The interaction parameters to use for the rebuild.

    """
    return p
