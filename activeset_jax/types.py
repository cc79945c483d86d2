"""Type definitions for activeset-jax.

This module contains type aliases and small wrapper types used throughout the
package. Array types use jaxtyping for runtime type checking with beartype.
"""

from collections.abc import Callable

import equinox as eqx
import jax.numpy as jnp
from jaxtyping import Array, Float, Int

# Type aliases for common array shapes
Scalar = Float[Array, ""]
Vector = Float[Array, " n"]
Matrix = Float[Array, "m n"]

# Hessian-vector product of the quadratic objective: hvp_fn(v) -> H @ v
HVPFn = Callable[[Vector], Vector]


class RowIndex(eqx.Module):
    """A row of the inequality constraint matrix ``A`` (0-based).

    ``value`` may also hold a 1-D batch of rows, e.g. for
    :meth:`WorkingActiveSet.add_all`.
    """

    value: Int[Array, "..."] = eqx.field(converter=jnp.asarray)


class Position(eqx.Module):
    """The k-th member (0-based) of the sorted sequence of active rows.

    Kept distinct from :class:`RowIndex`: position ``k`` in the working set
    is generally *not* row ``k`` of ``A``.
    """

    value: Int[Array, ""] = eqx.field(converter=jnp.asarray)


# Status codes for the primal active-set state machine
class QPStatus:
    """Constants for the state of a primal active-set solve."""

    INITIALIZING = 0
    ITERATING = 1
    CONVERGED = 2
    INFEASIBLE = 3
    MAX_ITERATIONS_EXCEEDED = 4
    # A zero-length step was computed; the loop stops without a KKT proof.
    DEGENERATE_STEP = 5

    _NAMES = {
        0: "initializing",
        1: "iterating",
        2: "converged",
        3: "infeasible",
        4: "max_iterations_exceeded",
        5: "degenerate_step",
    }

    @classmethod
    def name(cls, code: int) -> str:
        return cls._NAMES[int(code)]
