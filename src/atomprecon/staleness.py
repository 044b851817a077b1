"""Rebuild policy for cached preconditioners.

A cached preconditioner is rebuilt when either

- more than ``update_freq`` consecutive updates have been skipped, or
- some atom has moved by at least ``update_dist`` since the last rebuild.

The first rule caps how stale the operator can get near a minimum, where
small oscillations never accumulate enough drift; the second reacts to large
moves between scheduled rebuilds.

"""

from __future__ import annotations

import math
from typing import TYPE_CHECKING, Any

import torch

from atomprecon.atoms import positions

if TYPE_CHECKING:
    from atomprecon.precon import AMGPrecon


def max_displacement(new: torch.Tensor, old: torch.Tensor) -> float:
    """Maximum per-atom displacement between two position arrays.

    Parameters
    ----------
    new, old : torch.Tensor
        Positions with shape ``[N, 3]``.

    Returns
    -------
    float
        :math:`\\max_i \\|x_i^{new} - x_i^{old}\\|`, ``0.0`` for no atoms, and
        ``inf`` if the atom counts differ.

    """
    if new.shape != old.shape:
        return math.inf
    if new.numel() == 0:
        return 0.0
    return torch.linalg.vector_norm(new - old, dim=-1).max().item()


def needs_rebuild(cache: AMGPrecon, config: Any) -> bool:
    """Decide whether ``cache`` must be rebuilt for ``config``.

    This has no side effects on ``cache``.

    """
    if cache.skipped_updates > cache.update_freq:
        return True
    return max_displacement(positions(config), cache.old_positions) >= cache.update_dist
