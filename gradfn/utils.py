import logging
from typing import Callable, List, Optional, Sequence

import numpy as np

from gradfn.tensor import ArrayLike, Operand, Variable, as_matrix, backward

logger = logging.getLogger(__name__)


def numerical_vjp(
    fn: Callable[..., np.ndarray],
    inputs: Sequence[np.ndarray],
    gy: np.ndarray,
    eps: float = 1e-6,
) -> List[np.ndarray]:
    r"""
    Estimate the vector-Jacobian product of ``fn`` with central differences.

    For every element $x_k$ of every input:

    $$
    \frac{\partial L}{\partial x_k} \approx
    \frac{\langle g_y, f(x + \epsilon e_k) \rangle - \langle g_y, f(x - \epsilon e_k) \rangle}
    {2 \epsilon}
    $$

    Args:
        fn (Callable[..., np.ndarray]): Maps the input arrays to the output array.
        inputs (Sequence[np.ndarray]): Points at which to evaluate. Not modified.
        gy (np.ndarray): Upstream gradient, shaped like the output.
        eps (float, optional): Perturbation. Defaults to 1e-6.

    Returns:
        List[np.ndarray]: One gradient per input.
    """
    values = [np.array(x, dtype=np.float64, copy=True) for x in inputs]
    grads = []
    for x in values:
        grad = np.zeros_like(x)
        for idx in np.ndindex(x.shape):
            original = x[idx]
            x[idx] = original + eps
            plus = np.sum(fn(*values) * gy)
            x[idx] = original - eps
            minus = np.sum(fn(*values) * gy)
            x[idx] = original
            grad[idx] = (plus - minus) / (2.0 * eps)
        grads.append(grad)
    return grads


def check_gradients(
    builder: Callable[..., Operand],
    *inputs: ArrayLike,
    gy: Optional[ArrayLike] = None,
    eps: float = 1e-6,
    rtol: float = 1e-4,
    atol: float = 1e-6,
) -> bool:
    """
    Compare the analytic gradients of a graph against finite differences.

    ``builder`` receives one float64 :class:`Variable` per input and returns the output node,
    e.g. ``lambda a, b: mul(a, b)``. The graph is backwarded with ``gy`` (ones by default) and
    each input's accumulated gradient is compared with :func:`numerical_vjp`. Mismatches are
    logged as warnings.

    Args:
        builder (Callable[..., Operand]): Builds the graph from the input variables.
        *inputs (ArrayLike): Input values.
        gy (ArrayLike, optional): Upstream gradient. Defaults to ones.
        eps (float, optional): Finite-difference perturbation. Defaults to 1e-6.
        rtol (float, optional): Relative tolerance. Defaults to 1e-4.
        atol (float, optional): Absolute tolerance. Defaults to 1e-6.

    Returns:
        bool: Whether every gradient matched.

    Examples:
        >>> from gradfn.operators import prod
        >>> check_gradients(lambda a, b: prod(a, b), [1.0, 2.0], [3.0, 4.0])
        True
    """
    values = [as_matrix(x, dtype=np.float64) for x in inputs]
    variables = [Variable(v, requires_grad=True) for v in values]
    out = builder(*variables)
    gy = np.ones_like(out.value) if gy is None else as_matrix(gy, dtype=np.float64)
    backward(out, gy)

    def evaluate(*xs: np.ndarray) -> np.ndarray:
        return builder(*[Variable(x, requires_grad=False) for x in xs]).value

    expected = numerical_vjp(evaluate, values, gy, eps=eps)

    ok = True
    for i, (var, numerical) in enumerate(zip(variables, expected)):
        analytic = var.grad if var.grad is not None else np.zeros_like(var.value)
        if not np.allclose(analytic, numerical, rtol=rtol, atol=atol):
            ok = False
            logger.warning(
                f"Gradient mismatch for input {i}: max abs diff "
                f"{np.max(np.abs(analytic - numerical)):.3e}\n"
                f"analytic={analytic.tolist()}\nnumerical={numerical.tolist()}"
            )
    return ok
