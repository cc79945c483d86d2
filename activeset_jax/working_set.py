"""Working active set for the primal active-set QP solver.

The working set is the collection of inequality constraints ``a_i^T x >= b_i``
that the solver currently treats as equalities. It is stored as a boolean
membership mask over the rows of ``A``; iterating the mask in row order gives
the strictly increasing, duplicate-free sequence of active rows.

Two different integers address constraints and must not be confused:

- :class:`~activeset_jax.types.RowIndex` is a row of ``A``.
- :class:`~activeset_jax.types.Position` is the k-th member of the sorted
  active sequence.

Insertion and membership use rows; removal uses positions. Both index types
are 0-based. Out-of-range rows or positions are not checked.

All methods except :meth:`WorkingActiveSet.indices` and
:meth:`WorkingActiveSet.active_submatrix` keep fixed shapes and are safe to
call under ``jax.jit``.
"""

import equinox as eqx
import jax.numpy as jnp
from jaxtyping import Array, Bool, Float, Int

from activeset_jax.types import Position, RowIndex, Vector


class WorkingActiveSet(eqx.Module):
    """Sorted set of active inequality rows plus the matrix they index.

    Instances are immutable; every update returns a new working set.

    Attributes:
        A: Inequality constraint matrix (m x n).
        mask: Membership mask (m,); ``mask[i]`` is True when row i is active.
    """

    A: Float[Array, "m n"]
    mask: Bool[Array, " m"]

    @classmethod
    def empty(cls, A: Float[Array, "m n"]) -> "WorkingActiveSet":
        return cls(A=A, mask=jnp.zeros(A.shape[0], dtype=bool))

    @classmethod
    def at_point(
        cls,
        A: Float[Array, "m n"],
        b: Float[Array, " m"],
        x: Vector,
        epsilon: float,
    ) -> "WorkingActiveSet":
        """Seed a working set with every row active within ``epsilon`` at ``x``."""
        return cls(A=A, mask=jnp.abs(A @ x - b) <= epsilon)

    def size(self) -> Int[Array, ""]:
        return jnp.sum(self.mask, dtype=jnp.int32)

    def contains(self, row: RowIndex) -> Bool[Array, ""]:
        return self.mask[row.value]

    def add(self, row: RowIndex) -> "WorkingActiveSet":
        """Insert one row; adding a member again is a no-op."""
        return eqx.tree_at(lambda s: s.mask, self, self.mask.at[row.value].set(True))

    def add_all(self, rows: RowIndex) -> "WorkingActiveSet":
        """Insert a batch of rows given as a 1-D ``RowIndex``."""
        rows_value = jnp.atleast_1d(rows.value)
        return eqx.tree_at(lambda s: s.mask, self, self.mask.at[rows_value].set(True))

    def row_at(self, position: Position) -> RowIndex:
        """The row of ``A`` stored at ``position`` in sorted order."""
        ranks = jnp.cumsum(self.mask) - 1
        hit = self.mask & (ranks == position.value)
        return RowIndex(jnp.argmax(hit))

    def position_of(self, row: RowIndex) -> Position:
        """Position of an active ``row`` in the sorted active sequence."""
        before = jnp.arange(self.mask.shape[0]) < row.value
        return Position(jnp.sum(self.mask & before, dtype=jnp.int32))

    def remove_by_position(self, position: Position) -> "WorkingActiveSet":
        """Remove the k-th active constraint (k = ``position``, in sorted order)."""
        row = self.row_at(position)
        return eqx.tree_at(lambda s: s.mask, self, self.mask.at[row.value].set(False))

    def masked_matrix(self) -> Float[Array, "m n"]:
        """``A`` with inactive rows zeroed; fixed-shape stand-in for ``Aa``."""
        return jnp.where(self.mask[:, None], self.A, 0.0)

    def indices(self) -> Int[Array, " k"]:
        """Active rows in increasing order (eager only: data-dependent shape)."""
        return jnp.flatnonzero(self.mask)

    def active_submatrix(self) -> Float[Array, "k n"]:
        """``Aa``: the rows of ``A`` in the working set, in increasing row order.

        Derived from the mask on every call, so it always matches the current
        set. Eager only.
        """
        return self.A[self.indices()]
