"""Tests for the QP problem record and the tolerance helpers."""

import jax
import jax.numpy as jnp
import numpy as np
import pytest

from activeset_jax.problem import QPProblem
from activeset_jax.utils import auto_epsilon, compare, is_positive_definite

# Enable 64-bit precision for numerical accuracy
jax.config.update("jax_enable_x64", True)


class TestQPProblem:
    """Tests for QPProblem construction and evaluation."""

    def test_missing_constraints_are_empty(self):
        problem = QPProblem(H=jnp.eye(3), p=jnp.zeros(3))

        assert problem.A.shape == (0, 3)
        assert problem.b.shape == (0,)
        assert problem.Aeq.shape == (0, 3)
        assert problem.n_inequalities == 0
        assert not problem.has_equalities

    def test_single_row_constraint_is_promoted(self):
        problem = QPProblem(
            H=jnp.eye(2), p=jnp.zeros(2), Aeq=jnp.array([1.0, 1.0]), beq=2.0
        )

        assert problem.Aeq.shape == (1, 2)
        assert problem.beq.shape == (1,)
        assert problem.has_equalities

    def test_dimension_mismatch_raises(self):
        with pytest.raises(ValueError):
            QPProblem(H=jnp.eye(3), p=jnp.zeros(2))
        with pytest.raises(ValueError):
            QPProblem(H=jnp.eye(2), p=jnp.zeros(2), A=jnp.ones((2, 3)), b=jnp.ones(2))
        with pytest.raises(ValueError):
            QPProblem(H=jnp.eye(2), p=jnp.zeros(2), A=jnp.ones((2, 2)), b=jnp.ones(3))

    def test_unpaired_constraints_raise(self):
        with pytest.raises(ValueError):
            QPProblem(H=jnp.eye(2), p=jnp.zeros(2), A=jnp.eye(2))
        with pytest.raises(ValueError):
            QPProblem(H=jnp.eye(2), p=jnp.zeros(2), beq=jnp.ones(1))

    def test_objective_and_gradient(self):
        """f(x) = (1/2) x^T H x + p^T x with H = diag(2, 4), p = (1, -1)."""
        problem = QPProblem(H=jnp.diag(jnp.array([2.0, 4.0])), p=jnp.array([1.0, -1.0]))
        x = jnp.array([1.0, 2.0])

        np.testing.assert_allclose(problem.objective(x), 0.5 * (2 + 16) + 1 - 2)
        np.testing.assert_allclose(problem.gradient(x), [3.0, 7.0])

    def test_slack_and_active_rows(self):
        problem = QPProblem(
            H=jnp.eye(2),
            p=jnp.zeros(2),
            A=jnp.array([[1.0, 0.0], [0.0, 1.0], [1.0, 1.0]]),
            b=jnp.array([1.0, 0.0, 5.0]),
        )
        x = jnp.array([1.0, 2.0])

        np.testing.assert_allclose(problem.slack(x), [0.0, 2.0, -2.0])
        np.testing.assert_array_equal(problem.active_rows(x, 1e-10), [True, False, False])
        assert not problem.is_feasible(x, 1e-10)
        assert problem.is_feasible(jnp.array([3.0, 2.0]), 1e-10)

    def test_equalities_enter_feasibility(self):
        problem = QPProblem(
            H=jnp.eye(2), p=jnp.zeros(2), Aeq=jnp.array([[1.0, 1.0]]), beq=jnp.array([2.0])
        )

        assert problem.is_feasible(jnp.array([0.5, 1.5]), 1e-10)
        assert not problem.is_feasible(jnp.array([0.5, 1.0]), 1e-10)


class TestTolerances:
    """Tests for auto_epsilon and compare."""

    def test_auto_epsilon_scales_with_magnitude(self):
        eps = np.finfo(float).eps
        np.testing.assert_allclose(auto_epsilon(jnp.array([1.0, -2.0])), 2 * np.sqrt(2) * eps * 10)
        assert auto_epsilon(jnp.array([100.0])) > auto_epsilon(jnp.array([1.0]))

    def test_auto_epsilon_of_zeros_is_tiny(self):
        assert auto_epsilon(jnp.zeros(4)) == np.finfo(float).tiny
        assert auto_epsilon(jnp.zeros(0)) == np.finfo(float).tiny

    def test_auto_epsilon_accepts_several_inputs(self):
        np.testing.assert_allclose(auto_epsilon(3.0, -4.0), auto_epsilon(jnp.array([3.0, -4.0])))

    def test_compare(self):
        assert compare(1.0, 1.0 + 1e-12, 1e-10) == 0
        assert compare(1.0, 2.0, 1e-10) == -1
        assert compare(2.0, 1.0, 1e-10) == 1


class TestPositiveDefinite:
    """Tests for is_positive_definite."""

    def test_identity(self):
        assert is_positive_definite(jnp.eye(3))

    def test_indefinite(self):
        assert not is_positive_definite(jnp.diag(jnp.array([1.0, -1.0])))

    def test_semidefinite(self):
        assert not is_positive_definite(jnp.array([[1.0, 1.0], [1.0, 1.0]]))

    def test_asymmetric(self):
        assert not is_positive_definite(jnp.array([[2.0, 1.0], [0.0, 2.0]]))

    def test_nearly_singular_but_definite(self):
        H = jnp.array([[4.0, 0.0, 0.0], [0.0, 1.0, -1.0], [0.0, -1.0, 1.0]]) + 1e-9 * jnp.eye(3)
        assert is_positive_definite(H)

    def test_non_finite(self):
        assert not is_positive_definite(jnp.array([[jnp.nan, 0.0], [0.0, 1.0]]))
