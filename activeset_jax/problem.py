"""Quadratic programming problem definition.

The problem has the form:
    minimize    (1/2) x^T H x + p^T x
    subject to  A x >= b
                Aeq x = beq

with ``H`` symmetric positive definite. The problem is immutable input: no
solver in this package modifies it.
"""

from typing import Any, Optional

import equinox as eqx
import jax.numpy as jnp
from jaxtyping import Array, ArrayLike, Bool, Float

from activeset_jax.types import Scalar, Vector


def _as_matrix(value: Optional[ArrayLike], n: int) -> Float[Array, "rows n"]:
    if value is None:
        return jnp.zeros((0, n))
    arr = jnp.asarray(value, dtype=jnp.result_type(float))
    if arr.ndim == 1 and arr.shape[0] == n:
        arr = arr[None, :]
    if arr.ndim != 2 or arr.shape[1] != n:
        raise ValueError("Constraint matrix dimension mismatch")
    return arr


def _as_vector(value: Optional[ArrayLike], rows: int) -> Float[Array, " rows"]:
    if value is None:
        return jnp.zeros((rows,))
    arr = jnp.asarray(value, dtype=jnp.result_type(float)).reshape(-1)
    if arr.shape[0] != rows:
        raise ValueError("Constraint vector dimension mismatch")
    return arr


class QPProblem(eqx.Module):
    """A convex quadratic program with linear constraints.

    Missing inequality or equality constraints are stored as empty ``(0, n)``
    matrices and ``(0,)`` vectors so that the solvers never branch on
    ``None``.

    Attributes:
        H: Hessian of the objective (n x n).
        p: Linear term of the objective (n,).
        A: Inequality constraint matrix (m x n), read as ``A x >= b``.
        b: Inequality constraint RHS (m,).
        Aeq: Equality constraint matrix (k x n).
        beq: Equality constraint RHS (k,).

    Example:
        >>> import jax.numpy as jnp
        >>> from activeset_jax import QPProblem
        >>>
        >>> # minimize x1^2 + x2^2  s.t.  x1 >= 1, x2 >= 1
        >>> problem = QPProblem(H=2.0 * jnp.eye(2), p=jnp.zeros(2),
        ...                     A=jnp.eye(2), b=jnp.ones(2))
    """

    H: Float[Array, "n n"]
    p: Float[Array, " n"]
    A: Float[Array, "m n"]
    b: Float[Array, " m"]
    Aeq: Float[Array, "k n"]
    beq: Float[Array, " k"]

    def __init__(
        self,
        H: ArrayLike,
        p: ArrayLike,
        A: Optional[ArrayLike] = None,
        b: Optional[ArrayLike] = None,
        Aeq: Optional[ArrayLike] = None,
        beq: Optional[ArrayLike] = None,
    ):
        p_vec = jnp.asarray(p, dtype=jnp.result_type(float)).reshape(-1)
        n = p_vec.shape[0]
        H_mat = jnp.asarray(H, dtype=jnp.result_type(float))
        if H_mat.shape != (n, n):
            raise ValueError("H must be square and match the dimension of p")
        if (A is None) != (b is None):
            raise ValueError("A and b must be provided together")
        if (Aeq is None) != (beq is None):
            raise ValueError("Aeq and beq must be provided together")

        self.H = H_mat
        self.p = p_vec
        self.A = _as_matrix(A, n)
        self.b = _as_vector(b, self.A.shape[0])
        self.Aeq = _as_matrix(Aeq, n)
        self.beq = _as_vector(beq, self.Aeq.shape[0])

    @property
    def n_variables(self) -> int:
        return self.p.shape[0]

    @property
    def n_inequalities(self) -> int:
        return self.A.shape[0]

    @property
    def n_equalities(self) -> int:
        return self.Aeq.shape[0]

    @property
    def has_equalities(self) -> bool:
        return self.n_equalities > 0

    def objective(self, x: Vector, args: Any = None) -> Scalar:
        """``(1/2) x^T H x + p^T x``; the signature matches optimistix's ``fn``."""
        return 0.5 * jnp.dot(x, self.H @ x) + jnp.dot(self.p, x)

    def gradient(self, x: Vector) -> Vector:
        return self.H @ x + self.p

    def slack(self, x: Vector) -> Float[Array, " m"]:
        """Inequality slack ``A x - b``; non-negative entries are satisfied."""
        return self.A @ x - self.b

    def active_rows(self, x: Vector, epsilon: float) -> Bool[Array, " m"]:
        """Rows of ``A x >= b`` that hold with equality within ``epsilon``."""
        return jnp.abs(self.slack(x)) <= epsilon

    def is_feasible(self, x: Vector, epsilon: float) -> bool:
        ineq_ok = jnp.all(self.slack(x) >= -epsilon)
        eq_ok = jnp.all(jnp.abs(self.Aeq @ x - self.beq) <= epsilon)
        return bool(ineq_ok & eq_ok)
