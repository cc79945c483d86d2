"""Tests for the simplex pivot rules."""

import jax
import jax.numpy as jnp
import pytest

from activeset_jax.exceptions import UnboundedError
from activeset_jax.pivoting import (
    AbstractSimplexPivoting,
    GreedyRule,
    Pivot,
    SmallestSubscriptRule,
)
from activeset_jax.tableau import B_LABEL, COST_LABEL, Label, LabelType, SimplexTable

# Enable 64-bit precision for numerical accuracy
jax.config.update("jax_enable_x64", True)

BASIC = LabelType.BASIC
NON_BASIC = LabelType.NON_BASIC
RULES = [GreedyRule(), SmallestSubscriptRule()]


def _table(rows, row_labels=None, col_labels=None):
    rows = jnp.array(rows)
    n_rows, n_cols = rows.shape
    if row_labels is None:
        row_labels = tuple(Label(BASIC, i + 1) for i in range(n_rows - 1)) + (COST_LABEL,)
    if col_labels is None:
        col_labels = tuple(Label(NON_BASIC, j + 1) for j in range(n_cols - 1)) + (B_LABEL,)
    return SimplexTable(table=rows, row_labels=row_labels, col_labels=col_labels)


class TestPricing:
    """Entering column selection."""

    @pytest.mark.parametrize("rule", RULES)
    def test_single_candidate(self, rule):
        table = _table([[-1.0, 1.0, 4.0], [-2.0, -1.0, 6.0], [-3.0, 2.0, 0.0]])

        assert rule.get_pivot(table) == Pivot(1, 0)

    def test_greedy_takes_most_negative_cost(self):
        table = _table([[-1.0, -1.0, 4.0], [-1.0, -2.0, 6.0], [-1.0, -3.0, 0.0]])

        assert GreedyRule().pricing(table) == 1
        assert GreedyRule().get_pivot(table) == Pivot(1, 1)

    def test_bland_takes_smallest_subscript(self):
        table = _table([[-1.0, -1.0, 4.0], [-1.0, -2.0, 6.0], [-1.0, -3.0, 0.0]])

        assert SmallestSubscriptRule().pricing(table) == 0
        assert SmallestSubscriptRule().get_pivot(table) == Pivot(0, 0)

    def test_bland_uses_label_index_not_column_position(self):
        table = _table(
            [[-1.0, -1.0, 4.0], [-1.0, -3.0, 0.0]],
            col_labels=(Label(NON_BASIC, 2), Label(NON_BASIC, 1), B_LABEL),
        )

        assert SmallestSubscriptRule().pricing(table) == 1

    def test_greedy_tie_goes_to_first_column(self):
        table = _table([[-1.0, -1.0, 4.0], [-2.0, -2.0, 0.0]])

        assert GreedyRule().pricing(table) == 0

    @pytest.mark.parametrize("rule", RULES)
    def test_optimal_table_has_no_pivot(self, rule):
        table = _table([[-1.0, 1.0, 4.0], [0.0, 2.0, -7.0]])

        assert rule.pricing(table) is None
        assert rule.get_pivot(table) is None

    @pytest.mark.parametrize("rule", RULES)
    def test_artificial_column_never_enters(self, rule):
        table = _table(
            [[-1.0, 1.0, 4.0], [-5.0, 0.0, 0.0]],
            col_labels=(Label(LabelType.ARTIFICIAL, 0), Label(NON_BASIC, 1), B_LABEL),
        )

        assert rule.pricing(table) is None

    def test_rules_are_interchangeable(self):
        for rule in RULES:
            assert isinstance(rule, AbstractSimplexPivoting)
        assert not isinstance(GreedyRule(), SmallestSubscriptRule)
        assert not isinstance(SmallestSubscriptRule(), GreedyRule)


class TestRatioTest:
    """Leaving row selection."""

    @pytest.mark.parametrize("rule", RULES)
    def test_unbounded(self, rule):
        table = _table([[1.0, -1.0, 2.0], [2.0, 0.0, 1.0], [-1.0, 1.0, 0.0]])

        with pytest.raises(UnboundedError) as excinfo:
            rule.get_pivot(table)
        assert excinfo.value.column == 0

    def test_tie_goes_to_smallest_row_label(self):
        table = _table(
            [[-1.0, 0.0, 2.0], [-2.0, 0.0, 4.0], [-1.0, 1.0, 0.0]],
            row_labels=(Label(BASIC, 3), Label(BASIC, 1), COST_LABEL),
        )

        assert SmallestSubscriptRule().ratio_test(table, 0) == 1

    def test_ratios_within_rounding_are_tied(self):
        """2 and 2 * (1 + 1e-15) compare equal; a larger gap does not."""
        labels = (Label(BASIC, 3), Label(BASIC, 1), COST_LABEL)
        near = _table(
            [[-1.0, 0.0, 2.0], [-1.0, 0.0, 2.0 * (1 + 1e-15)], [-1.0, 1.0, 0.0]],
            row_labels=labels,
        )
        apart = _table(
            [[-1.0, 0.0, 2.0], [-1.0, 0.0, 2.0 * (1 + 1e-6)], [-1.0, 1.0, 0.0]],
            row_labels=labels,
        )

        assert GreedyRule().ratio_test(near, 0) == 1
        assert GreedyRule().ratio_test(apart, 0) == 0

    def test_free_rows_never_leave(self):
        table = _table(
            [[-4.0, 0.0, 1.0], [-1.0, 0.0, 5.0], [-1.0, 1.0, 0.0]],
            row_labels=(Label(LabelType.FREE, 2), Label(BASIC, 1), COST_LABEL),
        )

        assert GreedyRule().ratio_test(table, 0) == 1

    def test_zero_ratio_is_allowed(self):
        """A degenerate row with B = 0 blocks the step immediately."""
        table = _table([[-1.0, 0.0, 3.0], [-1.0, 1.0, 0.0], [-1.0, 1.0, 0.0]])

        assert SmallestSubscriptRule().ratio_test(table, 0) == 1
