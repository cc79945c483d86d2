"""Primal active-set solver for convex quadratic programs.

This module contains the primal active-set method (Nocedal & Wright,
Algorithm 16.3) as an ``optimistix.AbstractMinimiser``, together with the
eager :func:`solve_qp` driver that validates the problem, finds a feasible
starting vertex and runs the minimiser.

Each iteration either

1. moves along the equality-QP direction on the current working set,
   stopping at the first blocking inequality and adding it, or
2. at a stationary point of the working set, drops the active inequality
   with the most negative Lagrange multiplier, or stops when all of them are
   non-negative.
"""

import logging
from collections.abc import Callable
from typing import Any, Optional

import equinox as eqx
import jax
import jax.numpy as jnp
import numpy as np
import optimistix as optx
from jaxtyping import Array, ArrayLike, Bool, Float, Int

from activeset_jax.exceptions import InfeasibleError, NotPositiveDefiniteError
from activeset_jax.pivoting import AbstractSimplexPivoting, SmallestSubscriptRule
from activeset_jax.problem import QPProblem
from activeset_jax.simplex import find_feasible_point
from activeset_jax.subproblem import solve_equality_qp, solve_multipliers
from activeset_jax.types import QPStatus, RowIndex
from activeset_jax.utils import auto_epsilon, is_positive_definite
from activeset_jax.working_set import WorkingActiveSet

logger = logging.getLogger(__name__)


def _status(code: Any) -> Int[Array, ""]:
    return jnp.asarray(code, dtype=jnp.int32)


class ActiveSetState(eqx.Module):
    """State for the primal active-set solver.

    Attributes:
        step_count: Number of iterations performed.
        status: A ``QPStatus`` code.
        working_set: Inequality rows currently enforced as equalities.
        f_val: Objective value at the current point.
        grad: Objective gradient ``H x + p`` at the point the step started from.
        direction: Last search direction.
        step_size: Last step length (0 after a drop or a stop).
        multipliers: Inequality multipliers for all m rows (0 when inactive)
            followed by the k equality multipliers.
    """

    step_count: Int[Array, ""]
    status: Int[Array, ""]
    working_set: WorkingActiveSet
    f_val: Float[Array, ""]
    grad: Float[Array, " n"]
    direction: Float[Array, " n"]
    step_size: Float[Array, ""]
    multipliers: Float[Array, " m_total"]


class PrimalActiveSet(optx.AbstractMinimiser):
    """Primal active-set minimiser for a :class:`QPProblem`.

    The objective passed to ``optimistix.minimise`` must be
    ``problem.objective``, and ``y0`` must be feasible. The solver stops as
    soon as the status leaves ``ITERATING``; ``max_steps`` bounds the number
    of iterations.

    Attributes:
        problem: The quadratic program.
        epsilon: Tolerance for a zero step, a non-negative multiplier and an
            active row. Also exposed as ``rtol`` and ``atol``.
        max_cg_iter: Maximum CG iterations of the equality-QP sub-solver.
        cg_tol: Residual tolerance of the sub-solver.

    Example:
        >>> import jax.numpy as jnp
        >>> import optimistix as optx
        >>> from activeset_jax import PrimalActiveSet, QPProblem
        >>>
        >>> problem = QPProblem(H=2.0 * jnp.eye(2), p=jnp.zeros(2),
        ...                     A=jnp.eye(2), b=jnp.ones(2))
        >>> solver = PrimalActiveSet(problem)
        >>> sol = optx.minimise(problem.objective, solver, jnp.array([3.0, 2.0]),
        ...                     max_steps=50, throw=False)
    """

    problem: QPProblem
    epsilon: float
    rtol: float
    atol: float
    norm: Callable = eqx.field(static=True)
    max_cg_iter: int = eqx.field(static=True)
    cg_tol: float = eqx.field(static=True)

    def __init__(
        self,
        problem: QPProblem,
        epsilon: float = 1e-8,
        max_cg_iter: int = 100,
        cg_tol: float = 1e-12,
        norm: Callable = optx.max_norm,
    ):
        self.problem = problem
        self.epsilon = epsilon
        self.rtol = epsilon
        self.atol = epsilon
        self.norm = norm
        self.max_cg_iter = max_cg_iter
        self.cg_tol = cg_tol

    def init(
        self,
        fn: Callable,
        y: Float[Array, " n"],
        args: Any,
        options: dict[str, Any],
        f_struct: Any,
        aux_struct: Any,
        tags: frozenset[object],
    ) -> ActiveSetState:
        """Seed the working set with the inequality rows active at ``y``."""
        problem = self.problem
        f_val, _aux = fn(y, args)
        working_set = WorkingActiveSet.at_point(problem.A, problem.b, y, self.epsilon)
        return ActiveSetState(
            step_count=jnp.array(0),
            status=_status(QPStatus.INITIALIZING),
            working_set=working_set,
            f_val=f_val,
            grad=problem.gradient(y),
            direction=jnp.zeros_like(y),
            step_size=jnp.array(0.0, dtype=y.dtype),
            multipliers=jnp.zeros(
                (problem.n_inequalities + problem.n_equalities,), dtype=y.dtype
            ),
        )

    def step(
        self,
        fn: Callable,
        y: Float[Array, " n"],
        args: Any,
        options: dict[str, Any],
        state: ActiveSetState,
        tags: frozenset[object],
    ) -> tuple[Float[Array, " n"], ActiveSetState, Any]:
        """Perform one active-set iteration.

        This method:
        1. Computes the gradient ``g = H x + p``.
        2. Solves the equality QP on the active inequality rows stacked over
           the equality rows. With at least ``n`` such rows ``d = 0``.
        3. If ``d`` is zero, checks the multipliers and either converges or
           drops the most negative one.
        4. Otherwise takes the longest feasible step ``alpha <= 1`` along
           ``d``, adding the blocking row when ``alpha < 1``.
        """
        problem = self.problem
        n = y.shape[0]
        m = problem.n_inequalities
        k = problem.n_equalities
        eps = self.epsilon
        ws = state.working_set

        g = problem.gradient(y)
        combined = jnp.concatenate([problem.A, problem.Aeq], axis=0)
        combined_mask = jnp.concatenate([ws.mask, jnp.ones(k, dtype=bool)])
        n_combined = ws.size() + k

        def hvp_fn(v: Float[Array, " n"]) -> Float[Array, " n"]:
            return problem.H @ v

        d, _ = solve_equality_qp(
            hvp_fn,
            g,
            combined,
            jnp.zeros(m + k, dtype=y.dtype),
            combined_mask,
            self.max_cg_iter,
            self.cg_tol,
        )
        d = jnp.where(n_combined >= n, jnp.zeros_like(d), d)

        def drop_constraint():
            mu = solve_multipliers(combined, combined_mask, g)
            if m == 0:
                return y, ws.mask, _status(QPStatus.CONVERGED), mu
            mu_active = jnp.where(ws.mask, mu[:m], jnp.inf)
            # argmin keeps the first row, which is also the smallest position
            worst = RowIndex(jnp.argmin(mu_active))
            optimal = (ws.size() == 0) | (mu_active[worst.value] >= -eps)
            dropped = ws.remove_by_position(ws.position_of(worst))
            mask = jnp.where(optimal, ws.mask, dropped.mask)
            status = _status(jnp.where(optimal, QPStatus.CONVERGED, QPStatus.ITERATING))
            return y, mask, status, mu

        def take_step():
            mu = jnp.zeros(m + k, dtype=y.dtype)
            if m == 0:
                return y + d, ws.mask, _status(QPStatus.ITERATING), mu
            Ad = problem.A @ d
            # Ignore directions that are parallel to a row up to roundoff
            roundoff = (
                10.0
                * jnp.finfo(d.dtype).eps
                * jnp.linalg.norm(problem.A, axis=1)
                * jnp.linalg.norm(d)
            )
            blocking = (~ws.mask) & (Ad < -roundoff)
            alphas = jnp.where(
                blocking, problem.slack(y) / jnp.where(blocking, -Ad, 1.0), jnp.inf
            )
            row = RowIndex(jnp.argmin(alphas))
            alpha_min = alphas[row.value]
            alpha = jnp.minimum(1.0, alpha_min)

            degenerate = alpha <= 0.0
            y_new = jnp.where(degenerate, y, y + alpha * d)
            added = ws.add(row)
            mask = jnp.where((alpha_min < 1.0) & ~degenerate, added.mask, ws.mask)
            status = _status(
                jnp.where(degenerate, QPStatus.DEGENERATE_STEP, QPStatus.ITERATING)
            )
            return y_new, mask, status, mu

        stationary = self.norm(d) < eps
        y_new, mask_new, status, multipliers = jax.lax.cond(
            stationary, drop_constraint, take_step
        )
        step_size = jnp.where(
            stationary | (status != QPStatus.ITERATING),
            0.0,
            jnp.max(jnp.abs(y_new - y)) / jnp.maximum(jnp.max(jnp.abs(d)), 1e-30),
        )

        f_val_new, aux = fn(y_new, args)
        new_state = ActiveSetState(
            step_count=state.step_count + 1,
            status=status,
            working_set=eqx.tree_at(lambda s: s.mask, ws, mask_new),
            f_val=f_val_new,
            grad=g,
            direction=d,
            step_size=step_size,
            multipliers=multipliers,
        )
        return y_new, new_state, aux

    def terminate(
        self,
        fn: Callable,
        y: Float[Array, " n"],
        args: Any,
        options: dict[str, Any],
        state: ActiveSetState,
        tags: frozenset[object],
    ) -> tuple[Bool[Array, ""], Any]:
        """Stop once the status has left ``INITIALIZING``/``ITERATING``.

        Only ``CONVERGED`` is reported as successful; a degenerate stop is
        reported like an exhausted budget.
        """
        done = state.status >= QPStatus.CONVERGED
        result = jax.lax.cond(
            state.status == QPStatus.CONVERGED,
            lambda: optx.RESULTS.successful,
            lambda: jax.lax.cond(
                done,
                lambda: optx.RESULTS.max_steps_reached,
                lambda: optx.RESULTS.successful,  # Still running
            ),
        )
        return done, result

    def postprocess(
        self,
        fn: Callable,
        y: Float[Array, " n"],
        aux: Any,
        args: Any,
        options: dict[str, Any],
        state: ActiveSetState,
        tags: frozenset[object],
        result: Any,
    ) -> tuple[Float[Array, " n"], Any, dict[str, Any]]:
        stats = {
            "num_steps": state.step_count,
            "final_objective": state.f_val,
            "active_set_size": state.working_set.size(),
            "status": state.status,
        }
        return y, aux, stats


class QPSolution(eqx.Module):
    """Result of :func:`solve_qp`.

    Attributes:
        x: Final point; the minimizer when ``success`` is True.
        fun: Objective value at ``x``.
        status: A ``QPStatus`` code.
        iterations: Number of active-set iterations performed.
        active_rows: Final working set as a boolean mask over the rows of A.
        multipliers: Inequality then equality multipliers from the last
            iteration (meaningful when converged).
    """

    x: Float[Array, " n"]
    fun: Float[Array, ""]
    status: int = eqx.field(static=True)
    iterations: int = eqx.field(static=True)
    active_rows: Bool[Array, " m"]
    multipliers: Float[Array, " m_total"]

    @property
    def success(self) -> bool:
        return self.status == QPStatus.CONVERGED


def solve_qp(
    problem: QPProblem,
    x0: Optional[ArrayLike] = None,
    *,
    epsilon: Optional[float] = None,
    max_iterations: int = 1000,
    pivoting: AbstractSimplexPivoting = SmallestSubscriptRule(),
    max_cg_iter: int = 100,
    cg_tol: float = 1e-12,
) -> QPSolution:
    """Minimize a convex QP with the primal active-set method.

    Args:
        problem: The quadratic program; ``H`` must be positive definite.
        x0: Feasible starting point. When None, a vertex of the feasible
            region is found with the phase-1 simplex method.
        epsilon: Tolerance; defaults to ``sqrt(auto_epsilon(H))``.
        max_iterations: Iteration budget of the active-set loop.
        pivoting: Pivot rule for the phase-1 simplex search.
        max_cg_iter: Maximum CG iterations per equality-QP solve.
        cg_tol: CG residual tolerance.

    Returns:
        QPSolution. ``status`` is ``MAX_ITERATIONS_EXCEEDED`` or
        ``DEGENERATE_STEP`` when optimality could not be confirmed.

    Raises:
        NotPositiveDefiniteError: ``H`` is not positive definite.
        InfeasibleError: No point satisfies the constraints.
        ValueError: ``x0`` is given but is not feasible.
    """
    if not is_positive_definite(problem.H):
        raise NotPositiveDefiniteError("H must be symmetric positive definite")
    if epsilon is None:
        epsilon = float(np.sqrt(auto_epsilon(problem.H)))

    dtype = problem.p.dtype
    if x0 is not None:
        x0 = jnp.asarray(x0, dtype=dtype).reshape(-1)
        if x0.shape != (problem.n_variables,):
            raise ValueError("x0 must have one entry per variable")
        if not problem.is_feasible(x0, epsilon):
            raise ValueError("x0 does not satisfy the constraints")
    else:
        x0, phi = find_feasible_point(
            problem.A,
            problem.b,
            problem.Aeq if problem.has_equalities else None,
            problem.beq if problem.has_equalities else None,
            pivoting=pivoting,
        )
        if float(phi) > epsilon:
            raise InfeasibleError(f"constraints are infeasible (phi = {float(phi):g})")
        x0 = jnp.asarray(x0, dtype=dtype)

    solver = PrimalActiveSet(
        problem, epsilon=epsilon, max_cg_iter=max_cg_iter, cg_tol=cg_tol
    )
    sol = optx.minimise(
        problem.objective,
        solver,
        x0,
        max_steps=max_iterations,
        throw=False,
    )

    state = sol.state
    status = int(state.status)
    if status < QPStatus.CONVERGED:
        status = QPStatus.MAX_ITERATIONS_EXCEEDED
    iterations = int(state.step_count)
    if status != QPStatus.CONVERGED:
        logger.warning(
            "Optimality not confirmed after %d iterations: %s",
            iterations,
            QPStatus.name(status),
        )
    else:
        logger.debug("Converged after %d iterations", iterations)

    return QPSolution(
        x=sol.value,
        fun=problem.objective(sol.value),
        status=status,
        iterations=iterations,
        active_rows=state.working_set.mask,
        multipliers=state.multipliers,
    )
