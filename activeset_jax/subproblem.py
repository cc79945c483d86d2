"""Equality-constrained QP sub-solver.

Each iteration of the primal active-set method solves

    minimize    (1/2) d^T H d + g^T d
    subject to  A[active] d = b[active]

for the search direction ``d``. The solve is a **projected conjugate
gradient** method: CG runs in the null space of the active rows, starting
from a particular solution of the constraints. ``H`` is only accessed
through a Hessian-vector product, and inactive rows are masked rather than
removed, so every array keeps a fixed shape under ``jax.jit``.

For constraints ``A d = b`` the Lagrangian is

    L(d, mu) = (1/2) d^T H d + g^T d - mu^T (A d - b)

so stationarity reads ``H d + g = A^T mu``.
"""

from collections.abc import Callable
from typing import NamedTuple

import jax
import jax.numpy as jnp
from beartype import beartype
from jaxtyping import Array, Bool, Float, Int, jaxtyped

from activeset_jax.types import HVPFn


class _CGState(NamedTuple):
    """Internal state for the conjugate gradient loop."""

    d: Float[Array, " n"]
    r: Float[Array, " n"]
    p: Float[Array, " n"]
    r_norm_sq: Float[Array, ""]
    iteration: Int[Array, ""]
    converged: Bool[Array, ""]


def _conjugate_gradient(
    hvp_fn: HVPFn,
    project: Callable[[Float[Array, " n"]], Float[Array, " n"]],
    d0: Float[Array, " n"],
    r0: Float[Array, " n"],
    max_cg_iter: int,
    cg_tol: float,
) -> Float[Array, " n"]:
    """CG on ``H d = -g`` restricted to the range of ``project``.

    ``r0`` must already be projected. Stops early on a small residual, on
    non-positive curvature or on NaN, keeping the last finite iterate.
    """
    r0_norm_sq = jnp.dot(r0, r0)
    init_cg = _CGState(
        d=d0,
        r=r0,
        p=r0,
        r_norm_sq=r0_norm_sq,
        iteration=jnp.array(0),
        converged=r0_norm_sq < cg_tol**2,
    )

    def cg_step(i, state):
        def do_step(state):
            Hp = project(hvp_fn(state.p))
            pHp = jnp.dot(state.p, Hp)
            alpha = state.r_norm_sq / jnp.maximum(pHp, 1e-30)

            d_new = state.d + alpha * state.p
            r_new = state.r - alpha * Hp
            r_new_norm_sq = jnp.dot(r_new, r_new)
            beta = r_new_norm_sq / jnp.maximum(state.r_norm_sq, 1e-30)
            p_new = r_new + beta * state.p

            has_nan = jnp.any(jnp.isnan(d_new)) | jnp.any(jnp.isnan(r_new))
            converged = (r_new_norm_sq < cg_tol**2) | (pHp <= 0.0) | has_nan

            # Keep the previous iterate on NaN or non-positive curvature
            keep = has_nan | (pHp <= 0.0)
            return _CGState(
                d=jnp.where(keep, state.d, d_new),
                r=jnp.where(keep, state.r, r_new),
                p=jnp.where(keep, state.p, p_new),
                r_norm_sq=jnp.where(keep, state.r_norm_sq, r_new_norm_sq),
                iteration=state.iteration + 1,
                converged=converged,
            )

        return jax.lax.cond(state.converged, lambda s: s, do_step, state)

    final_cg = jax.lax.fori_loop(0, max_cg_iter, cg_step, init_cg)
    return final_cg.d


def _masked_normal_solver(
    A_masked: Float[Array, "m n"], active_mask: Bool[Array, " m"]
) -> Callable[[Float[Array, " m"]], Float[Array, " m"]]:
    """Solver for ``(A A^T) y = rhs`` over the active rows.

    Inactive rows get a unit diagonal so their component of ``y`` is zero.
    The active block is left unregularised so that the projection built on
    it is exact; dependent active rows fall back to the least-squares
    solution.
    """
    reg_diag = jnp.where(active_mask, 0.0, 1.0)
    AAt = A_masked @ A_masked.T + jnp.diag(reg_diag)

    def solve(rhs: Float[Array, " m"]) -> Float[Array, " m"]:
        result, _, _, _ = jnp.linalg.lstsq(AAt, rhs)
        return jnp.where(jnp.any(jnp.isnan(result)), jnp.zeros_like(result), result)

    return solve


@jaxtyped(typechecker=beartype)
def solve_equality_qp(
    hvp_fn: Callable,
    g: Float[Array, " n"],
    A: Float[Array, "m n"],
    b: Float[Array, " m"],
    active_mask: Bool[Array, " m"],
    max_cg_iter: int = 100,
    cg_tol: float = 1e-12,
) -> tuple[Float[Array, " n"], Float[Array, " m"]]:
    """Solve the equality-constrained QP over the masked rows of ``A``.

    The method:
    1. Computes a particular solution ``d_p`` with ``A d_p = b`` on the
       active rows.
    2. Projects onto the null space of the active rows with
       ``P(v) = v - A^T (A A^T)^{-1} A v``.
    3. Runs CG from ``d_p`` inside that null space.
    4. Recovers the multipliers from stationarity,
       ``mu = (A A^T)^{-1} A (H d + g)``.

    With no rows, or no active row, this is plain CG on ``H d = -g``.

    Args:
        hvp_fn: Hessian-vector product function v -> H @ v.
        g: Linear term (gradient of the objective).
        A: Constraint matrix (m x n); only rows with ``active_mask`` count.
        b: Constraint right-hand side (m,).
        active_mask: Boolean mask (m,) of the rows to enforce.
        max_cg_iter: Maximum CG iterations.
        cg_tol: CG convergence tolerance on the residual norm.

    Returns:
        Tuple ``(d, multipliers)``; multipliers are 0 for inactive rows.
    """
    m = A.shape[0]
    if m == 0:
        d = _conjugate_gradient(
            hvp_fn, lambda v: v, jnp.zeros_like(g), -g, max_cg_iter, cg_tol
        )
        return d, jnp.zeros((0,), dtype=g.dtype)

    A_masked = jnp.where(active_mask[:, None], A, 0.0)
    b_masked = jnp.where(active_mask, b, 0.0)
    solve_AAt = _masked_normal_solver(A_masked, active_mask)

    def project(v: Float[Array, " n"]) -> Float[Array, " n"]:
        return v - A_masked.T @ solve_AAt(A_masked @ v)

    d_p = A_masked.T @ solve_AAt(b_masked)
    r0 = project(-(g + hvp_fn(d_p)))
    d = _conjugate_gradient(hvp_fn, project, d_p, r0, max_cg_iter, cg_tol)
    d = jnp.where(jnp.any(jnp.isnan(d)), d_p, d)
    # Remove any drift off the constraint set accumulated by CG
    d = d_p + project(d - d_p)

    multipliers = solve_AAt(A_masked @ (hvp_fn(d) + g))
    multipliers = jnp.where(active_mask, multipliers, 0.0)
    return d, multipliers


@jaxtyped(typechecker=beartype)
def solve_multipliers(
    A: Float[Array, "m n"],
    active_mask: Bool[Array, " m"],
    rhs: Float[Array, " n"],
) -> Float[Array, " m"]:
    """Least-squares multipliers ``mu`` with ``A[active]^T mu = rhs``.

    Returns the minimum-norm solution, with zeros for inactive rows. When the
    active rows are linearly dependent this is one particular solution among
    many.
    """
    if A.shape[0] == 0:
        return jnp.zeros((0,), dtype=rhs.dtype)
    A_masked = jnp.where(active_mask[:, None], A, 0.0)
    mu, _, _, _ = jnp.linalg.lstsq(A_masked.T, rhs)
    return jnp.where(active_mask, mu, 0.0)
