"""Numerical tolerance helpers."""

import math

import jax.numpy as jnp
import numpy as np
from beartype import beartype
from jaxtyping import Array, ArrayLike, Float, jaxtyped


def auto_epsilon(*inputs: ArrayLike) -> float:
    """Guess a precision parameter from the magnitude of the inputs.

    ``max|x| * sqrt(number of inputs) * machine epsilon * 10``, or the smallest
    normal float when every input is zero.
    """
    values = np.concatenate([np.ravel(np.asarray(x, dtype=float)) for x in inputs])
    if values.size == 0:
        return float(np.finfo(float).tiny)
    auto = float(np.max(np.abs(values))) * math.sqrt(values.size)
    auto *= float(np.finfo(float).eps) * 10
    if auto == 0:
        auto = float(np.finfo(float).tiny)
    return auto


def compare(a: float, b: float, epsilon: float) -> int:
    """Three-way comparison treating ``|a - b| <= epsilon`` as equal."""
    if a - b == 0 or abs(a - b) <= epsilon:
        return 0
    return -1 if a < b else 1


@jaxtyped(typechecker=beartype)
def is_positive_definite(H: Float[Array, "n n"], epsilon: float = 0.0) -> bool:
    """Check that ``H`` is symmetric with all eigenvalues above ``epsilon``."""
    if not bool(jnp.all(jnp.isfinite(H))):
        return False
    asymmetry = jnp.max(jnp.abs(H - H.T))
    if float(asymmetry) > 1e3 * auto_epsilon(H):
        return False
    eigenvalues = jnp.linalg.eigvalsh(H)
    return bool(jnp.min(eigenvalues) > epsilon)
