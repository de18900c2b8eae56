"""
Projections of a whole tensor onto the probability simplex (softmax, sparsemax), the sparsemax
loss, and max pooling.

The softmax and sparsemax functions treat the input as a flat collection of scores: the output
has the input shape and sums to one over all of its elements.
"""

import logging
from typing import Optional, Tuple

import numpy as np

from gradfn.errors import ConfigurationError, ShapeMismatchError
from gradfn.tensor import Function, Operand, check_not_empty, check_same_shape

logger = logging.getLogger(__name__)


def sparsemax_threshold(z: np.ndarray) -> Tuple[float, np.ndarray]:
    r"""
    Compute the sparsemax threshold $\tau$ of the scores ``z``.

    The scores are sorted in decreasing order $z_{(1)} \ge z_{(2)} \ge \ldots$ and the support
    size is the largest $k$ such that $1 + k z_{(k)} > \sum_{j \le k} z_{(j)}$. Then

    $$
    \tau = \frac{\sum_{j \le k} z_{(j)} - 1}{k}
    $$

    Paper: https://arxiv.org/abs/1602.02068

    Args:
        z (np.ndarray): The scores (any shape).

    Returns:
        Tuple[float, np.ndarray]: ``tau`` and the boolean support mask, shaped like ``z``.
    """
    flat = z.reshape(-1)
    sorted_desc = np.sort(flat)[::-1]
    cumsum = np.cumsum(sorted_desc)
    ks = np.arange(1, flat.size + 1)
    # k = 1 always satisfies the condition
    k = ks[1.0 + ks * sorted_desc > cumsum][-1]
    tau = (cumsum[k - 1] - 1.0) / k
    return float(tau), z > tau


class Softmax(Function):
    r"""
    Softmax over all the elements of the input.

    $$
    y_i = \frac{e^{x_i - \max(x)}}{\sum_j e^{x_j - \max(x)}}
    $$

    Backward applies the Jacobian $J = \text{diag}(y) - y y^T$ without building it:

    $$
    \frac{\partial L}{\partial x} = y \odot \left(g_y - \sum_j g_{y_j} y_j\right)
    $$
    """

    _cache = ("y",)

    def __init__(self, x: Operand):
        super().__init__(x)
        self.x = x
        self.y: Optional[np.ndarray] = None

    def _forward(self) -> np.ndarray:
        x = self.x.value
        check_not_empty(self.name, x)
        # Subtract the max to avoid overflow
        e = np.exp(x - np.max(x))
        self.y = e / np.sum(e)
        return self.y.copy()

    def _backward(self, gy: np.ndarray) -> None:
        check_same_shape(self.name, self.y, gy, what="output and gradient")
        if self.x.requires_grad:
            self.x.acc_grad(self.y * (gy - np.sum(gy * self.y)))


class SparseMax(Function):
    r"""
    Euclidean projection of the input onto the probability simplex. Unlike softmax the output
    can be exactly zero.

    $$
    y = \max(0, v - \tau), \qquad v = x - \max(x)
    $$

    Backward, with $S$ the support (non-zero outputs):

    $$
    \frac{\partial L}{\partial x_i} = \begin{cases}
    g_{y_i} - \frac{1}{|S|}\sum_{j \in S} g_{y_j} & i \in S \\
    0 & i \notin S
    \end{cases}
    $$
    """

    _cache = ("support",)

    def __init__(self, x: Operand):
        super().__init__(x)
        self.x = x
        self.support: Optional[np.ndarray] = None

    def _forward(self) -> np.ndarray:
        x = self.x.value
        check_not_empty(self.name, x)
        v = x - np.max(x)
        tau, self.support = sparsemax_threshold(v)
        return np.maximum(0.0, v - tau).astype(x.dtype)

    def _backward(self, gy: np.ndarray) -> None:
        check_same_shape(self.name, self.x.value, gy, what="input and gradient")
        if self.x.requires_grad:
            mean = np.sum(gy[self.support]) / np.count_nonzero(self.support)
            self.x.acc_grad(np.where(self.support, gy - mean, 0.0))


class SparseMaxLoss(Function):
    r"""
    The sparsemax loss term, computed on the untranslated input:

    $$
    y = x - \left(\frac{1}{2} \sum_{j \in S} (x_j^2 - \tau^2) + \frac{1}{2}\right)
    $$

    Backward:

    $$
    \frac{\partial L}{\partial x} = g_y - \text{sparsemax}(x) \sum_j g_{y_j}
    $$
    """

    _cache = ("sparsemax",)

    def __init__(self, x: Operand):
        super().__init__(x)
        self.x = x
        self.sparsemax: Optional[np.ndarray] = None

    def _forward(self) -> np.ndarray:
        x = self.x.value
        check_not_empty(self.name, x)
        tau, support = sparsemax_threshold(x)
        z = x[support]
        regularizer = 0.5 * np.sum(z * z - tau * tau) + 0.5
        self.sparsemax = np.maximum(0.0, x - tau).astype(x.dtype)
        return (x - regularizer).astype(x.dtype)

    def _backward(self, gy: np.ndarray) -> None:
        check_same_shape(self.name, self.x.value, gy, what="input and gradient")
        if self.x.requires_grad:
            self.x.acc_grad(gy - self.sparsemax * np.sum(gy))


class MaxPooling(Function):
    """
    Max pooling over non-overlapping ``rows x cols`` windows.

    The input dimensions must be multiples of the window dimensions. Within each window the first
    occurrence (row-major) of the maximum is recorded, and backward routes the window's gradient
    to that cell only.
    """

    _cache = ("argmax",)

    def __init__(self, x: Operand, rows: int, cols: int):
        if rows <= 0 or cols <= 0:
            raise ConfigurationError(
                f"{type(self).__name__}: window dimensions must be positive, got {(rows, cols)}"
            )
        super().__init__(x)
        self.x = x
        self.rows = rows
        self.cols = cols
        self.argmax: Optional[np.ndarray] = None

    def _windows(self, x: np.ndarray) -> np.ndarray:
        """Rearrange ``x`` into ``(out_rows, out_cols, rows * cols)``, one window per cell."""
        out_rows, out_cols = x.shape[0] // self.rows, x.shape[1] // self.cols
        return (
            x.reshape(out_rows, self.rows, out_cols, self.cols)
            .transpose(0, 2, 1, 3)
            .reshape(out_rows, out_cols, self.rows * self.cols)
        )

    def _forward(self) -> np.ndarray:
        x = self.x.value
        check_not_empty(self.name, x)
        if x.shape[0] % self.rows != 0 or x.shape[1] % self.cols != 0:
            raise ShapeMismatchError(
                self.name,
                f"input {x.shape} is not divisible into {(self.rows, self.cols)} windows",
                expected=(self.rows, self.cols),
                actual=x.shape,
            )
        windows = self._windows(x)
        # argmax returns the first occurrence
        self.argmax = np.argmax(windows, axis=2)
        return np.take_along_axis(windows, self.argmax[..., None], axis=2)[..., 0].copy()

    def _backward(self, gy: np.ndarray) -> None:
        rows, cols = self.x.value.shape
        out_rows, out_cols = rows // self.rows, cols // self.cols
        if gy.shape != (out_rows, out_cols):
            raise ShapeMismatchError(
                self.name,
                f"gradient with incompatible shape: expected {(out_rows, out_cols)}, "
                f"got {gy.shape}",
                expected=(out_rows, out_cols),
                actual=gy.shape,
            )
        if self.x.requires_grad:
            gw = np.zeros((out_rows, out_cols, self.rows * self.cols), dtype=gy.dtype)
            np.put_along_axis(gw, self.argmax[..., None], gy[..., None], axis=2)
            gx = (
                gw.reshape(out_rows, out_cols, self.rows, self.cols)
                .transpose(0, 2, 1, 3)
                .reshape(rows, cols)
            )
            self.x.acc_grad(gx)
