"""Pivot selection rules for the simplex tableau.

A pivot rule has two halves. *Pricing* picks the entering column from the
reduced costs in the last row of the table; this is where the rules differ.
The *ratio test* picks the leaving row for that column and is shared.

Both rules are final variants of :class:`AbstractSimplexPivoting`; choose one
by passing it as the ``pivoting`` argument of the solvers.
"""

import abc
from typing import NamedTuple, Optional

import equinox as eqx
import numpy as np

from activeset_jax.exceptions import UnboundedError
from activeset_jax.tableau import SIGN_CONSTRAINED, LabelType, SimplexTable
from activeset_jax.utils import auto_epsilon, compare

# Column labels that may enter the basis
_ENTERING = frozenset({LabelType.NON_BASIC, LabelType.BASIC, LabelType.FREE})


class Pivot(NamedTuple):
    row: int
    column: int


def _candidate_columns(table: SimplexTable) -> list[int]:
    """Columns with a negative reduced cost in the last row."""
    costs = np.asarray(table.cost_row())
    return [
        j
        for j, label in enumerate(table.col_labels[:-1])
        if label.type in _ENTERING and costs[j] < -table.epsilon
    ]


class AbstractSimplexPivoting(eqx.Module):
    """Interface shared by the simplex pivot rules."""

    @abc.abstractmethod
    def pricing(self, table: SimplexTable) -> Optional[int]:
        """Entering column, or None when no reduced cost is negative."""

    def ratio_test(self, table: SimplexTable, s: int) -> Optional[int]:
        """Leaving row for entering column ``s``, or None if nothing blocks it.

        Only sign-constrained rows with a negative entry in column ``s``
        limit the step. The blocking ratio is ``-B[i] / T[i, s]``; ratios
        equal within ``auto_epsilon`` are broken by the smallest row label
        index.
        """
        T = np.asarray(table.table)
        eps = table.epsilon
        best_row = None
        best_ratio = None
        for i, label in enumerate(table.row_labels[:-1]):
            if label.type not in SIGN_CONSTRAINED:
                continue
            entry = T[i, s]
            if entry >= -eps:
                continue
            ratio = -T[i, -1] / entry
            if best_row is None:
                best_row, best_ratio = i, ratio
                continue
            order = compare(ratio, best_ratio, auto_epsilon(ratio, best_ratio))
            if order < 0 or (
                order == 0 and label.index < table.row_labels[best_row].index
            ):
                best_row, best_ratio = i, ratio
        return best_row

    def get_pivot(self, table: SimplexTable) -> Optional[Pivot]:
        """Next pivot, or None when the table is optimal.

        Raises:
            UnboundedError: An improving column has no blocking row.
        """
        s = self.pricing(table)
        if s is None:
            return None
        r = self.ratio_test(table, s)
        if r is None:
            raise UnboundedError(s)
        return Pivot(r, s)


class GreedyRule(AbstractSimplexPivoting):
    """Enter the column with the most negative reduced cost.

    Fast in practice but may cycle on degenerate problems.
    """

    def pricing(self, table: SimplexTable) -> Optional[int]:
        candidates = _candidate_columns(table)
        if not candidates:
            return None
        costs = np.asarray(table.cost_row())
        # min() keeps the first occurrence on ties
        return min(candidates, key=lambda j: costs[j])


class SmallestSubscriptRule(AbstractSimplexPivoting):
    """Bland's rule: enter the improving column with the smallest label index."""

    def pricing(self, table: SimplexTable) -> Optional[int]:
        candidates = _candidate_columns(table)
        if not candidates:
            return None
        return min(candidates, key=lambda j: table.col_labels[j].index)
