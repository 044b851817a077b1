"""Per-element reference bond lengths.

The nearest-neighbour distance :math:`r_{nn}` of an element is taken from
its reference crystal structure in :data:`ase.data.reference_states`:

========== ===========================
structure  :math:`r_{nn}`
========== ===========================
fcc        :math:`a / \\sqrt{2}`
bcc        :math:`a \\sqrt{3} / 2`
diamond    :math:`a \\sqrt{3} / 4`
hcp        :math:`a`
sc         :math:`a`
diatom     :math:`d`
========== ===========================

Elements with any other (or no) reference structure fall back to twice
their covalent radius.

"""

import logging
import math

from ase.data import atomic_numbers, covalent_radii, reference_states

logger = logging.getLogger(__name__)

_NN_FACTOR = {
    "fcc": 1.0 / math.sqrt(2.0),
    "bcc": math.sqrt(3.0) / 2.0,
    "diamond": math.sqrt(3.0) / 4.0,
    "hcp": 1.0,
    "sc": 1.0,
}


def reference_bond_length(symbol: str) -> float:
    """Nearest-neighbour distance of an element in its reference state.

    Parameters
    ----------
    symbol : str
        Chemical symbol, e.g. ``"Cu"``.

    Returns
    -------
    float
        Reference bond length in Angstrom.

    Raises
    ------
    ValueError
        If ``symbol`` is not a chemical element.

    Example
    -------
    >>> round(reference_bond_length("Cu"), 3)
    2.553

    """
    try:
        Z = atomic_numbers[symbol]
    except KeyError:
        msg = f"Unknown chemical symbol: {symbol!r}."
        raise ValueError(msg) from None

    state = reference_states[Z]
    if state is not None:
        symmetry = state.get("symmetry")
        if symmetry in _NN_FACTOR:
            return float(state["a"]) * _NN_FACTOR[symmetry]
        if symmetry == "diatom":
            return float(state["d"])

    r = 2.0 * float(covalent_radii[Z])
    logger.warning(
        "No usable reference structure for %s; using twice the covalent radius (%.3f)",
        symbol,
        r,
    )
    return r
