"""Exceptions raised by the eager (non-jitted) parts of activeset-jax."""


class NotPositiveDefiniteError(ValueError):
    """The Hessian of the quadratic objective is not positive definite."""


class InfeasibleError(Exception):
    """No point satisfies the constraints."""


class UnboundedError(Exception):
    """The objective decreases without bound along a simplex column.

    Attributes:
        column: Tableau column of the improving variable that no row blocks.
    """

    def __init__(self, column: int):
        super().__init__(f"unbounded along tableau column {column}")
        self.column = column
