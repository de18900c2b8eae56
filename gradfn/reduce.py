import logging
from typing import Optional, Tuple

import numpy as np

from gradfn.errors import ConfigurationError
from gradfn.tensor import Function, Operand, check_not_empty, check_scalar

logger = logging.getLogger(__name__)


class ReduceSum(Function):
    r"""
    $$
    y = \sum_{i,j} x_{ij}, \qquad \frac{\partial L}{\partial x} = g_y \mathbf{1}
    $$
    """

    def __init__(self, x: Operand):
        super().__init__(x)
        self.x = x

    def _forward(self) -> np.ndarray:
        return np.array([[np.sum(self.x.value)]], dtype=self.x.value.dtype)

    def _backward(self, gy: np.ndarray) -> None:
        check_scalar(self.name, gy, what="gradient")
        if self.x.requires_grad:
            self.x.acc_grad(np.full_like(self.x.value, gy.item()))


class ReduceMean(Function):
    r"""
    $$
    y = \frac{1}{n} \sum_{i,j} x_{ij}, \qquad \frac{\partial L}{\partial x} = \frac{g_y}{n} \mathbf{1}
    $$

    where $n$ is the number of elements of $x$, which must be at least one.
    """

    def __init__(self, x: Operand):
        super().__init__(x)
        self.x = x

    def _forward(self) -> np.ndarray:
        check_not_empty(self.name, self.x.value)
        return np.array([[np.mean(self.x.value)]], dtype=self.x.value.dtype)

    def _backward(self, gy: np.ndarray) -> None:
        check_scalar(self.name, gy, what="gradient")
        if self.x.requires_grad:
            n = self.x.value.size
            self.x.acc_grad(np.full_like(self.x.value, gy.item() / n))


class ReduceMax(Function):
    """
    The largest element as a 1x1 output. The gradient flows to the first occurrence of the
    maximum (row-major), recorded during forward.
    """

    _cache = ("argmax",)

    def __init__(self, x: Operand):
        super().__init__(x)
        self.x = x
        self.argmax: Optional[Tuple[int, int]] = None

    def _forward(self) -> np.ndarray:
        x = self.x.value
        check_not_empty(self.name, x)
        self.argmax = np.unravel_index(np.argmax(x), x.shape)
        return np.array([[x[self.argmax]]], dtype=x.dtype)

    def _backward(self, gy: np.ndarray) -> None:
        check_scalar(self.name, gy, what="gradient")
        if self.x.requires_grad:
            gx = np.zeros_like(self.x.value)
            gx[self.argmax] = gy.item()
            self.x.acc_grad(gx)


class ScalarMax(Function):
    """
    The largest of several 1x1 operands. Only the first operand holding the maximum receives
    the gradient.
    """

    _cache = ("argmax",)

    def __init__(self, *xs: Operand):
        if not xs:
            raise ConfigurationError(f"{type(self).__name__}: at least one operand is required")
        super().__init__(*xs)
        self.xs = xs
        self.argmax: Optional[int] = None

    def _forward(self) -> np.ndarray:
        values = []
        for x in self.xs:
            check_scalar(self.name, x.value)
            values.append(x.value.item())
        self.argmax = int(np.argmax(values))
        return self.xs[self.argmax].value.reshape(1, 1).copy()

    def _backward(self, gy: np.ndarray) -> None:
        check_scalar(self.name, gy, what="gradient")
        winner = self.xs[self.argmax]
        if winner.requires_grad:
            winner.acc_grad(gy.reshape(winner.value.shape))
