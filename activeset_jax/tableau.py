"""Labelled simplex tableau with Jordan exchange.

The tableau follows Ferris, Mangasarian & Wright, *Linear Programming with
MATLAB* (SIAM, 2007). Every row expresses its row variable as an affine
function of the column variables:

    row_var_i = sum_j T[i, j] * col_var_j + T[i, B]

The last column is the right-hand-side ``B`` column and the last row is the
cost row that the pivot rules price against. Because column variables sit at
zero, the current value of each row variable is its ``B`` entry and the
current objective is the ``B`` entry of the cost row.

Labels are static metadata, so a :class:`SimplexTable` is an ordinary
equinox pytree whose only array leaf is the table itself. All operations
return new tables.
"""

import enum
from typing import NamedTuple, Optional, Sequence

import equinox as eqx
import jax.numpy as jnp
import numpy as np
from jaxtyping import Array, ArrayLike, Float

from activeset_jax.utils import auto_epsilon


class LabelType(enum.Enum):
    """Role of a tableau row or column."""

    NON_BASIC = "non-basic"  # an original sign-constrained variable x_j >= 0
    BASIC = "basic"  # the slack of an inequality row
    FREE = "free"  # an original variable without a sign constraint
    ARTIFICIAL = "artificial"  # the phase-1 variable x0 >= 0
    B = "b"
    COST = "cost"
    EQUALITY = "equality"  # the residual of an equality row, forced to zero
    ARTIFICIAL_COST = "artificial cost"


# Row labels whose variables must stay non-negative
SIGN_CONSTRAINED = frozenset({LabelType.NON_BASIC, LabelType.BASIC, LabelType.ARTIFICIAL})


class Label(NamedTuple):
    """A row or column label: its type and the 1-based index of its variable."""

    type: LabelType
    index: int


B_LABEL = Label(LabelType.B, 0)
COST_LABEL = Label(LabelType.COST, 0)
ARTIFICIAL_LABEL = Label(LabelType.ARTIFICIAL, 0)
ARTIFICIAL_COST_LABEL = Label(LabelType.ARTIFICIAL_COST, 0)


class SimplexTable(eqx.Module):
    """A dense simplex tableau with row and column labels.

    Attributes:
        table: The tableau entries, including the ``B`` column and cost row.
        row_labels: One label per row; the last is the cost row.
        col_labels: One label per column; the last is ``B_LABEL``.
        epsilon: Values with magnitude at most ``epsilon`` are treated as 0.
    """

    table: Float[Array, "rows cols"]
    row_labels: tuple[Label, ...] = eqx.field(static=True)
    col_labels: tuple[Label, ...] = eqx.field(static=True)
    epsilon: float = eqx.field(static=True, default=1e-12)

    def __check_init__(self):
        if self.table.shape != (len(self.row_labels), len(self.col_labels)):
            raise ValueError("Table shape does not match its labels")

    @classmethod
    def from_lp(
        cls,
        c: ArrayLike,
        A: Optional[ArrayLike] = None,
        b: Optional[ArrayLike] = None,
        Aeq: Optional[ArrayLike] = None,
        beq: Optional[ArrayLike] = None,
        free: Sequence[int] = (),
        epsilon: Optional[float] = None,
    ) -> "SimplexTable":
        """Build the initial tableau of ``min c^T x`` s.t. ``A x >= b``, ``Aeq x = beq``.

        Variables whose 0-based index is in ``free`` carry no sign constraint;
        the rest are ``x_j >= 0``. Each inequality contributes a ``BASIC``
        slack row ``A_i x - b_i`` and each equality an ``EQUALITY`` row
        ``Aeq_i x - beq_i``. When ``epsilon`` is None it is derived from the
        magnitude of the tableau entries.
        """
        c_vec = jnp.asarray(c, dtype=jnp.result_type(float)).reshape(-1)
        n = c_vec.shape[0]

        def block(M, v):
            if M is None:
                return jnp.zeros((0, n + 1))
            M = jnp.asarray(M, dtype=c_vec.dtype).reshape(-1, n)
            v = jnp.asarray(v, dtype=c_vec.dtype).reshape(-1)
            return jnp.concatenate([M, -v[:, None]], axis=1)

        ineq = block(A, b)
        eq = block(Aeq, beq)
        cost = jnp.concatenate([c_vec, jnp.zeros(1, dtype=c_vec.dtype)])[None, :]
        table = jnp.concatenate([ineq, eq, cost], axis=0)

        free_set = set(free)
        col_labels = tuple(
            Label(LabelType.FREE if j in free_set else LabelType.NON_BASIC, j + 1)
            for j in range(n)
        ) + (B_LABEL,)
        row_labels = (
            tuple(Label(LabelType.BASIC, i + 1) for i in range(ineq.shape[0]))
            + tuple(Label(LabelType.EQUALITY, i + 1) for i in range(eq.shape[0]))
            + (COST_LABEL,)
        )
        if epsilon is None:
            epsilon = auto_epsilon(table)
        return cls(table=table, row_labels=row_labels, col_labels=col_labels, epsilon=epsilon)

    @property
    def n_rows(self) -> int:
        return len(self.row_labels)

    @property
    def n_cols(self) -> int:
        return len(self.col_labels)

    def b_column(self) -> Float[Array, " rows"]:
        return self.table[:, -1]

    def cost_row(self) -> Float[Array, " cols"]:
        """Reduced costs from the last row, without the ``B`` entry."""
        return self.table[-1, :-1]

    def row_of(self, label: Label) -> Optional[int]:
        try:
            return self.row_labels.index(label)
        except ValueError:
            return None

    def col_of(self, label: Label) -> Optional[int]:
        try:
            return self.col_labels.index(label)
        except ValueError:
            return None

    def swap(self, r: int, s: int) -> "SimplexTable":
        """Jordan exchange of row variable ``r`` with column variable ``s``.

        With pivot ``p = T[r, s]`` the new table is

            new[r, s] = 1 / p
            new[r, j] = -T[r, j] / p
            new[i, s] = T[i, s] / p
            new[i, j] = T[i, j] - T[i, s] * T[r, j] / p

        and the two labels trade places.
        """
        T = self.table
        pivot = T[r, s]
        col = T[:, s]
        row = T[r, :]
        new = T - jnp.outer(col, row) / pivot
        new = new.at[r, :].set(-row / pivot)
        new = new.at[:, s].set(col / pivot)
        new = new.at[r, s].set(1.0 / pivot)

        row_labels = list(self.row_labels)
        col_labels = list(self.col_labels)
        row_labels[r], col_labels[s] = col_labels[s], row_labels[r]
        return SimplexTable(new, tuple(row_labels), tuple(col_labels), self.epsilon)

    def add_row(self, label: Label, values: ArrayLike) -> "SimplexTable":
        """Append a row at the bottom; it becomes the priced cost row."""
        values = jnp.asarray(values, dtype=self.table.dtype).reshape(1, -1)
        table = jnp.concatenate([self.table, values], axis=0)
        return SimplexTable(table, self.row_labels + (label,), self.col_labels, self.epsilon)

    def add_column(self, label: Label, values: ArrayLike, at: int = 0) -> "SimplexTable":
        values = jnp.asarray(values, dtype=self.table.dtype).reshape(-1, 1)
        table = jnp.concatenate([self.table[:, :at], values, self.table[:, at:]], axis=1)
        col_labels = self.col_labels[:at] + (label,) + self.col_labels[at:]
        return SimplexTable(table, self.row_labels, col_labels, self.epsilon)

    def delete_row(self, r: int) -> "SimplexTable":
        table = jnp.delete(self.table, r, axis=0)
        row_labels = self.row_labels[:r] + self.row_labels[r + 1 :]
        return SimplexTable(table, row_labels, self.col_labels, self.epsilon)

    def delete_column(self, s: int) -> "SimplexTable":
        table = jnp.delete(self.table, s, axis=1)
        col_labels = self.col_labels[:s] + self.col_labels[s + 1 :]
        return SimplexTable(table, self.row_labels, col_labels, self.epsilon)

    def is_feasible(self) -> bool:
        """True when every sign-constrained row variable is non-negative."""
        b = np.asarray(self.b_column())
        return all(
            b[i] >= -self.epsilon
            for i, label in enumerate(self.row_labels)
            if label.type in SIGN_CONSTRAINED
        )

    def minimum(self) -> float:
        """Current objective value: the ``B`` entry of the cost row."""
        return float(self.table[-1, -1])

    def minimizer(self, n: int) -> Float[Array, " n"]:
        """Values of the ``n`` original variables at the current vertex.

        Variables in rows take their ``B`` entry; variables in columns are 0.
        """
        b = np.asarray(self.b_column())
        x = np.zeros(n, dtype=b.dtype)
        for i, label in enumerate(self.row_labels):
            if label.type in (LabelType.NON_BASIC, LabelType.FREE):
                x[label.index - 1] = b[i]
        return jnp.asarray(x)
