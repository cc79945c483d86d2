"""Two-phase tableau simplex solver.

Solves

    minimize    c^T x
    subject to  A x >= b
                Aeq x = beq
                x_j >= 0  for j not in ``free``

with the tableau scheme of Ferris, Mangasarian & Wright:

1. Scheme II eliminates the equality rows and moves free variables into
   rows, where the ratio test never lets them leave.
2. Phase 1 restores feasibility with a single artificial variable ``x0``.
3. Phase 2 pivots on the cost row until no reduced cost is negative.

The pivot rule is pluggable through the ``pivoting`` argument. This module
runs eagerly; it is used to find the starting vertex of the primal
active-set QP solver.
"""

import logging
from typing import Optional, Sequence

import equinox as eqx
import jax.numpy as jnp
import numpy as np
from jaxtyping import Array, ArrayLike, Float

from activeset_jax.exceptions import InfeasibleError, UnboundedError
from activeset_jax.pivoting import AbstractSimplexPivoting, SmallestSubscriptRule
from activeset_jax.tableau import (
    ARTIFICIAL_COST_LABEL,
    ARTIFICIAL_LABEL,
    SIGN_CONSTRAINED,
    LabelType,
    SimplexTable,
)
from activeset_jax.types import Scalar, Vector

logger = logging.getLogger(__name__)


class LPSolution(eqx.Module):
    """Minimizer and minimum of a linear program."""

    x: Vector
    fun: Scalar


def _pivot(table: SimplexTable, r: int, s: int) -> SimplexTable:
    logger.debug(
        "Pivot (%d, %d): %s leaves, %s enters",
        r,
        s,
        table.row_labels[r],
        table.col_labels[s],
    )
    return table.swap(r, s)


def _nonzero_entry(table: SimplexTable, r: int, types) -> Optional[int]:
    """First column of ``types`` with a usable pivot in row ``r``."""
    T = np.asarray(table.table)
    for j, label in enumerate(table.col_labels[:-1]):
        if label.type in types and abs(T[r, j]) > table.epsilon:
            return j
    return None


def scheme2(table: SimplexTable, pivoting: AbstractSimplexPivoting) -> SimplexTable:
    """Eliminate equality rows, then pivot free columns into rows.

    Raises:
        InfeasibleError: An equality row is inconsistent with the others.
    """
    while True:
        r = next(
            (i for i, label in enumerate(table.row_labels) if label.type is LabelType.EQUALITY),
            None,
        )
        if r is None:
            break
        s = _nonzero_entry(table, r, {LabelType.FREE})
        if s is None:
            s = _nonzero_entry(table, r, {LabelType.NON_BASIC})
        if s is None:
            # Every coefficient is zero, so the row reads 0 = -B.
            if abs(float(table.table[r, -1])) > table.epsilon:
                raise InfeasibleError(f"equality {table.row_labels[r].index} is inconsistent")
            logger.debug("Dropping redundant equality %d", table.row_labels[r].index)
            table = table.delete_row(r)
            continue
        table = _pivot(table, r, s)
        # The equality residual is now a column variable pinned at zero.
        table = table.delete_column(s)

    T = np.asarray(table.table)
    s = 0
    while s < table.n_cols - 1:
        if table.col_labels[s].type is not LabelType.FREE:
            s += 1
            continue
        r = pivoting.ratio_test(table, s)
        if r is None:
            r = next(
                (
                    i
                    for i, label in enumerate(table.row_labels[:-1])
                    if label.type in SIGN_CONSTRAINED and abs(T[i, s]) > table.epsilon
                ),
                None,
            )
        if r is None:
            # Only the cost row depends on this variable; phase 2 checks it.
            s += 1
            continue
        table = _pivot(table, r, s)
        T = np.asarray(table.table)
        s += 1
    return table


def phase2(table: SimplexTable, pivoting: AbstractSimplexPivoting) -> SimplexTable:
    """Pivot until the last row has no negative reduced cost."""
    while True:
        pivot = pivoting.get_pivot(table)
        if pivot is None:
            return table
        table = _pivot(table, pivot.row, pivot.column)


def phase1(table: SimplexTable, pivoting: AbstractSimplexPivoting) -> SimplexTable:
    """Drive the table to a feasible vertex with one artificial variable.

    Raises:
        InfeasibleError: The artificial variable cannot be driven to zero.
    """
    b = np.asarray(table.b_column())
    negative = [
        i
        for i, label in enumerate(table.row_labels)
        if label.type in SIGN_CONSTRAINED and b[i] < -table.epsilon
    ]
    if not negative:
        return table
    logger.debug("Phase 1 with %d infeasible rows", len(negative))

    column = np.zeros(table.n_rows)
    column[negative] = 1.0
    table = table.add_column(ARTIFICIAL_LABEL, column, at=0)
    cost = np.zeros(table.n_cols)
    cost[0] = 1.0
    table = table.add_row(ARTIFICIAL_COST_LABEL, cost)

    # x0 takes the worst infeasibility, which makes every row non-negative.
    r = min(negative, key=lambda i: b[i])
    table = _pivot(table, r, 0)
    table = phase2(table, pivoting)

    residual = table.minimum()
    if residual > table.epsilon:
        raise InfeasibleError(f"phase 1 stopped with artificial cost {residual:g}")

    # x0 is zero now; move it back to a column before dropping it.
    r = table.row_of(ARTIFICIAL_LABEL)
    if r is not None:
        s = _nonzero_entry(table, r, {LabelType.NON_BASIC, LabelType.BASIC, LabelType.FREE})
        if s is None:
            table = table.delete_row(r)
        else:
            table = _pivot(table, r, s)
    table = table.delete_row(table.n_rows - 1)
    s = table.col_of(ARTIFICIAL_LABEL)
    if s is not None:
        table = table.delete_column(s)
    logger.debug("Phase 1 reached a feasible vertex")
    return table


def solve_lp(
    c: ArrayLike,
    A: Optional[ArrayLike] = None,
    b: Optional[ArrayLike] = None,
    Aeq: Optional[ArrayLike] = None,
    beq: Optional[ArrayLike] = None,
    free: Sequence[int] = (),
    *,
    pivoting: AbstractSimplexPivoting = SmallestSubscriptRule(),
    epsilon: Optional[float] = None,
) -> LPSolution:
    """Minimize a linear program with the two-phase tableau method.

    Args:
        c: Cost vector (n,).
        A: Inequality matrix for ``A x >= b``, or None.
        b: Inequality right-hand side, or None.
        Aeq: Equality matrix for ``Aeq x = beq``, or None.
        beq: Equality right-hand side, or None.
        free: 0-based indices of variables without a sign constraint.
        pivoting: Pivot rule used by every phase.
        epsilon: Zero threshold; derived from the table entries when None.

    Returns:
        LPSolution with the minimizer and the minimum.

    Raises:
        InfeasibleError: No point satisfies the constraints.
        UnboundedError: The objective is unbounded below on the feasible set.
    """
    n = np.size(c)
    table = SimplexTable.from_lp(c, A, b, Aeq, beq, free=free, epsilon=epsilon)
    table = scheme2(table, pivoting)
    table = phase1(table, pivoting)

    costs = np.asarray(table.cost_row())
    for s, label in enumerate(table.col_labels[:-1]):
        # A free column left over by scheme II moves the cost and nothing else.
        if label.type is LabelType.FREE and abs(costs[s]) > table.epsilon:
            raise UnboundedError(s)

    table = phase2(table, pivoting)
    solution = LPSolution(x=table.minimizer(n), fun=jnp.asarray(table.minimum()))
    logger.debug("LP minimum %g", float(solution.fun))
    return solution


def find_feasible_point(
    A: ArrayLike,
    b: ArrayLike,
    Aeq: Optional[ArrayLike] = None,
    beq: Optional[ArrayLike] = None,
    *,
    pivoting: AbstractSimplexPivoting = SmallestSubscriptRule(),
) -> tuple[Float[Array, " n"], Float[Array, ""]]:
    """Find a point of ``{x : A x >= b, Aeq x = beq}``.

    Solves the phase-1 problem of Nocedal & Wright (11.25):

        minimize    phi
        subject to  A x + phi * 1 >= b
                    Aeq x = beq
                    phi >= 0

    with ``x`` free. The constraint set is feasible exactly when the optimal
    ``phi`` is zero.

    Returns:
        ``(x, phi)``; ``x`` satisfies the constraints once relaxed by ``phi``.

    Raises:
        InfeasibleError: The equality constraints are inconsistent.
    """
    A = jnp.atleast_2d(jnp.asarray(A, dtype=jnp.result_type(float)))
    b = jnp.asarray(b, dtype=A.dtype).reshape(-1)
    m, n = A.shape

    c = jnp.zeros(n + 1, dtype=A.dtype).at[n].set(1.0)
    A_phi = jnp.concatenate([A, jnp.ones((m, 1), dtype=A.dtype)], axis=1)
    Aeq_phi = None
    if Aeq is not None:
        Aeq = jnp.atleast_2d(jnp.asarray(Aeq, dtype=A.dtype))
        Aeq_phi = jnp.concatenate([Aeq, jnp.zeros((Aeq.shape[0], 1), dtype=A.dtype)], axis=1)

    solution = solve_lp(
        c, A_phi, b, Aeq_phi, beq, free=tuple(range(n)), pivoting=pivoting
    )
    x = solution.x[:n]
    phi = solution.x[n]
    logger.info("Phase 1 finished with phi = %g", float(phi))
    return x, phi
