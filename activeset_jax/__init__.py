"""activeset-jax: a primal active-set QP solver in pure JAX.

This package solves convex quadratic programs

    minimize    (1/2) x^T H x + p^T x
    subject to  A x >= b,  Aeq x = beq

with the primal active-set method, implemented as an Optimistix minimiser.
Starting vertices come from a phase-1 tableau simplex search with a
pluggable pivot rule (greedy or Bland's smallest subscript).
"""

from activeset_jax.exceptions import (
    InfeasibleError,
    NotPositiveDefiniteError,
    UnboundedError,
)
from activeset_jax.pivoting import (
    AbstractSimplexPivoting,
    GreedyRule,
    Pivot,
    SmallestSubscriptRule,
)
from activeset_jax.problem import QPProblem
from activeset_jax.simplex import LPSolution, find_feasible_point, solve_lp
from activeset_jax.solver import ActiveSetState, PrimalActiveSet, QPSolution, solve_qp
from activeset_jax.subproblem import solve_equality_qp, solve_multipliers
from activeset_jax.tableau import Label, LabelType, SimplexTable
from activeset_jax.types import HVPFn, Position, QPStatus, RowIndex
from activeset_jax.utils import auto_epsilon, compare, is_positive_definite
from activeset_jax.working_set import WorkingActiveSet

__all__ = [
    # Main solver
    "PrimalActiveSet",
    "ActiveSetState",
    "QPSolution",
    "QPProblem",
    "solve_qp",
    # Types
    "HVPFn",
    "Position",
    "QPStatus",
    "RowIndex",
    # Working set
    "WorkingActiveSet",
    # Sub-solver
    "solve_equality_qp",
    "solve_multipliers",
    # Simplex
    "Label",
    "LabelType",
    "SimplexTable",
    "Pivot",
    "AbstractSimplexPivoting",
    "GreedyRule",
    "SmallestSubscriptRule",
    "LPSolution",
    "solve_lp",
    "find_feasible_point",
    # Errors
    "InfeasibleError",
    "NotPositiveDefiniteError",
    "UnboundedError",
    # Utilities
    "auto_epsilon",
    "compare",
    "is_positive_definite",
]
