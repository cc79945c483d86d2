"""Tests for the working active set."""

import jax
import jax.numpy as jnp
import numpy as np

from activeset_jax.types import Position, RowIndex
from activeset_jax.working_set import WorkingActiveSet

# Enable 64-bit precision for numerical accuracy
jax.config.update("jax_enable_x64", True)

A = jnp.arange(10.0).reshape(5, 2)


class TestMembership:
    """Insertion, membership and ordering."""

    def test_empty(self):
        ws = WorkingActiveSet.empty(A)

        assert int(ws.size()) == 0
        assert ws.active_submatrix().shape == (0, 2)

    def test_rows_are_kept_sorted(self):
        ws = WorkingActiveSet.empty(A).add(RowIndex(3)).add(RowIndex(1))

        np.testing.assert_array_equal(ws.indices(), [1, 3])
        np.testing.assert_array_equal(ws.active_submatrix(), A[jnp.array([1, 3])])

    def test_add_is_idempotent(self):
        ws = WorkingActiveSet.empty(A).add(RowIndex(2))
        again = ws.add(RowIndex(2))

        assert int(again.size()) == 1
        np.testing.assert_array_equal(again.mask, ws.mask)

    def test_add_all(self):
        ws = WorkingActiveSet.empty(A).add(RowIndex(2)).add_all(RowIndex([4, 0, 2]))

        np.testing.assert_array_equal(ws.indices(), [0, 2, 4])

    def test_contains(self):
        ws = WorkingActiveSet.empty(A).add(RowIndex(1))

        assert bool(ws.contains(RowIndex(1)))
        assert not bool(ws.contains(RowIndex(0)))

    def test_active_submatrix_follows_updates(self):
        ws = WorkingActiveSet.empty(A).add(RowIndex(0))
        np.testing.assert_array_equal(ws.active_submatrix(), A[:1])

        ws = ws.add(RowIndex(4))
        np.testing.assert_array_equal(ws.active_submatrix(), A[jnp.array([0, 4])])

    def test_masked_matrix_zeroes_inactive_rows(self):
        ws = WorkingActiveSet.empty(A).add(RowIndex(1))
        masked = ws.masked_matrix()

        np.testing.assert_array_equal(masked[1], A[1])
        np.testing.assert_array_equal(masked[jnp.array([0, 2, 3, 4])], 0.0)

    def test_at_point(self):
        """Rows of A x >= b that are tight at x = (2, 0)."""
        A_nw = jnp.array(
            [[1.0, -2.0], [-1.0, -2.0], [-1.0, 2.0], [1.0, 0.0], [0.0, 1.0]]
        )
        b_nw = jnp.array([-2.0, -6.0, -2.0, 0.0, 0.0])

        ws = WorkingActiveSet.at_point(A_nw, b_nw, jnp.array([2.0, 0.0]), 1e-10)

        np.testing.assert_array_equal(ws.indices(), [2, 4])


class TestPositions:
    """Removal by position and the row/position converters."""

    def test_remove_by_position_is_not_remove_by_row(self):
        """Position 1 in {1, 3} is row 3, not row 1."""
        ws = WorkingActiveSet.empty(A).add(RowIndex(1)).add(RowIndex(3))

        ws = ws.remove_by_position(Position(1))

        np.testing.assert_array_equal(ws.indices(), [1])

    def test_remove_first_position(self):
        ws = WorkingActiveSet.empty(A).add_all(RowIndex([0, 2, 4]))

        ws = ws.remove_by_position(Position(0))

        np.testing.assert_array_equal(ws.indices(), [2, 4])
        np.testing.assert_array_equal(ws.active_submatrix(), A[jnp.array([2, 4])])

    def test_converters(self):
        ws = WorkingActiveSet.empty(A).add_all(RowIndex([1, 3, 4]))

        assert int(ws.position_of(RowIndex(3)).value) == 1
        assert int(ws.position_of(RowIndex(4)).value) == 2
        assert int(ws.row_at(Position(0)).value) == 1
        assert int(ws.row_at(Position(2)).value) == 4

    def test_updates_under_jit(self):
        @jax.jit
        def update(ws):
            return ws.add(RowIndex(4)).remove_by_position(Position(0))

        ws = update(WorkingActiveSet.empty(A).add(RowIndex(2)))

        np.testing.assert_array_equal(ws.indices(), [4])
        assert int(ws.size()) == 1
