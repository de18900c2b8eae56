"""
Element-wise binary functions, and the scalar-augmented variants where one side is a 1x1 operand.
"""

import logging

import numpy as np

from gradfn.tensor import Function, Operand, check_same_shape, check_scalar

logger = logging.getLogger(__name__)


class BinaryElementwise(Function):
    """Common validation for two same-shaped operands."""

    def __init__(self, x1: Operand, x2: Operand):
        super().__init__(x1, x2)
        self.x1 = x1
        self.x2 = x2

    def _check_operands(self) -> None:
        check_same_shape(self.name, self.x1.value, self.x2.value)

    def _check_grad(self, gy: np.ndarray) -> None:
        check_same_shape(self.name, self.x1.value, gy, what="output and gradient")


class Add(BinaryElementwise):
    r"""
    $$
    y = x_1 + x_2, \qquad \frac{\partial L}{\partial x_1} = \frac{\partial L}{\partial x_2} = g_y
    $$
    """

    def _forward(self) -> np.ndarray:
        self._check_operands()
        return self.x1.value + self.x2.value

    def _backward(self, gy: np.ndarray) -> None:
        self._check_grad(gy)
        if self.x1.requires_grad:
            self.x1.acc_grad(gy)
        if self.x2.requires_grad:
            self.x2.acc_grad(gy)


class Sub(BinaryElementwise):
    r"""
    $$
    y = x_1 - x_2, \qquad \frac{\partial L}{\partial x_1} = g_y, \qquad
    \frac{\partial L}{\partial x_2} = -g_y
    $$
    """

    def _forward(self) -> np.ndarray:
        self._check_operands()
        return self.x1.value - self.x2.value

    def _backward(self, gy: np.ndarray) -> None:
        self._check_grad(gy)
        if self.x1.requires_grad:
            self.x1.acc_grad(gy)
        if self.x2.requires_grad:
            self.x2.acc_grad(-gy)


class Prod(BinaryElementwise):
    r"""
    Hadamard product.
    $$
    y = x_1 \odot x_2, \qquad
    \frac{\partial L}{\partial x_1} = x_2 \odot g_y, \qquad
    \frac{\partial L}{\partial x_2} = x_1 \odot g_y
    $$
    """

    def _forward(self) -> np.ndarray:
        self._check_operands()
        return self.x1.value * self.x2.value

    def _backward(self, gy: np.ndarray) -> None:
        self._check_grad(gy)
        if self.x1.requires_grad:
            self.x1.acc_grad(self.x2.value * gy)
        if self.x2.requires_grad:
            self.x2.acc_grad(self.x1.value * gy)


class Div(BinaryElementwise):
    r"""
    Element-wise division.
    $$
    y = \frac{x_1}{x_2}, \qquad
    \frac{\partial L}{\partial x_1} = \frac{g_y}{x_2}, \qquad
    \frac{\partial L}{\partial x_2} = -\frac{x_1 \odot g_y}{x_2^2}
    $$
    """

    def _forward(self) -> np.ndarray:
        self._check_operands()
        return self.x1.value / self.x2.value

    def _backward(self, gy: np.ndarray) -> None:
        self._check_grad(gy)
        x1, x2 = self.x1.value, self.x2.value
        if self.x1.requires_grad:
            self.x1.acc_grad(gy / x2)
        if self.x2.requires_grad:
            self.x2.acc_grad(-(x1 * gy) / (x2 * x2))


class Max(BinaryElementwise):
    """
    Element-wise maximum. The gradient goes to the operand that strictly wins each element;
    where both are equal neither receives it.
    """

    def _forward(self) -> np.ndarray:
        self._check_operands()
        return np.maximum(self.x1.value, self.x2.value)

    def _backward(self, gy: np.ndarray) -> None:
        self._check_grad(gy)
        x1, x2 = self.x1.value, self.x2.value
        if self.x1.requires_grad:
            self.x1.acc_grad(np.where(x1 > x2, gy, 0.0))
        if self.x2.requires_grad:
            self.x2.acc_grad(np.where(x2 > x1, gy, 0.0))


class Min(BinaryElementwise):
    """Element-wise minimum, with the same tie policy as :class:`Max`."""

    def _forward(self) -> np.ndarray:
        self._check_operands()
        return np.minimum(self.x1.value, self.x2.value)

    def _backward(self, gy: np.ndarray) -> None:
        self._check_grad(gy)
        x1, x2 = self.x1.value, self.x2.value
        if self.x1.requires_grad:
            self.x1.acc_grad(np.where(x1 < x2, gy, 0.0))
        if self.x2.requires_grad:
            self.x2.acc_grad(np.where(x2 < x1, gy, 0.0))


class Pow(Function):
    r"""
    Raise every element to a constant power.
    $$
    y = x^p, \qquad \frac{\partial L}{\partial x} = p\, x^{p-1} \odot g_y
    $$
    """

    def __init__(self, x: Operand, power: float):
        super().__init__(x)
        self.x = x
        self.power = float(power)

    def _forward(self) -> np.ndarray:
        return np.power(self.x.value, self.power)

    def _backward(self, gy: np.ndarray) -> None:
        check_same_shape(self.name, self.x.value, gy, what="input and gradient")
        if self.x.requires_grad:
            self.x.acc_grad(self.power * np.power(self.x.value, self.power - 1) * gy)


class Square(Function):
    r"""
    $$
    y = x \odot x, \qquad \frac{\partial L}{\partial x} = 2 x \odot g_y
    $$
    """

    def __init__(self, x: Operand):
        super().__init__(x)
        self.x = x

    def _forward(self) -> np.ndarray:
        return self.x.value * self.x.value

    def _backward(self, gy: np.ndarray) -> None:
        check_same_shape(self.name, self.x.value, gy, what="input and gradient")
        if self.x.requires_grad:
            self.x.acc_grad(2.0 * self.x.value * gy)


class Identity(Function):
    """Copy of its input. Useful as the first node of an accumulation."""

    def __init__(self, x: Operand):
        super().__init__(x)
        self.x = x

    def _forward(self) -> np.ndarray:
        return self.x.value.copy()

    def _backward(self, gy: np.ndarray) -> None:
        check_same_shape(self.name, self.x.value, gy, what="input and gradient")
        if self.x.requires_grad:
            self.x.acc_grad(gy)


class ScalarElementwise(Function):
    """
    ``x1`` is any tensor, ``x2`` a 1x1 operand broadcast over it. The gradient of ``x2`` is a
    full reduction of its element-wise contributions.
    """

    def __init__(self, x1: Operand, x2: Operand):
        super().__init__(x1, x2)
        self.x1 = x1
        self.x2 = x2

    def _scalar(self) -> float:
        check_scalar(self.name, self.x2.value, what="second operand")
        return self.x2.value.item()

    def _check_grad(self, gy: np.ndarray) -> None:
        check_same_shape(self.name, self.x1.value, gy, what="output and gradient")


class AddScalar(ScalarElementwise):
    def _forward(self) -> np.ndarray:
        return self.x1.value + self._scalar()

    def _backward(self, gy: np.ndarray) -> None:
        self._scalar()
        self._check_grad(gy)
        if self.x1.requires_grad:
            self.x1.acc_grad(gy)
        if self.x2.requires_grad:
            self.x2.acc_grad(np.sum(gy))


class SubScalar(ScalarElementwise):
    """``x1 - x2``."""

    def _forward(self) -> np.ndarray:
        return self.x1.value - self._scalar()

    def _backward(self, gy: np.ndarray) -> None:
        self._scalar()
        self._check_grad(gy)
        if self.x1.requires_grad:
            self.x1.acc_grad(gy)
        if self.x2.requires_grad:
            self.x2.acc_grad(-np.sum(gy))


class ReverseSubScalar(ScalarElementwise):
    """``x2 - x1``."""

    def _forward(self) -> np.ndarray:
        return self._scalar() - self.x1.value

    def _backward(self, gy: np.ndarray) -> None:
        self._scalar()
        self._check_grad(gy)
        if self.x1.requires_grad:
            self.x1.acc_grad(-gy)
        if self.x2.requires_grad:
            self.x2.acc_grad(np.sum(gy))


class ProdScalar(ScalarElementwise):
    def _forward(self) -> np.ndarray:
        return self.x1.value * self._scalar()

    def _backward(self, gy: np.ndarray) -> None:
        c = self._scalar()
        self._check_grad(gy)
        if self.x1.requires_grad:
            self.x1.acc_grad(gy * c)
        if self.x2.requires_grad:
            self.x2.acc_grad(np.sum(gy * self.x1.value))


class DivScalar(ScalarElementwise):
    r"""
    $$
    y = \frac{x_1}{c}, \qquad
    \frac{\partial L}{\partial x_1} = \frac{g_y}{c}, \qquad
    \frac{\partial L}{\partial c} = -\sum \frac{g_y \odot x_1}{c^2}
    $$
    """

    def _forward(self) -> np.ndarray:
        return self.x1.value / self._scalar()

    def _backward(self, gy: np.ndarray) -> None:
        c = self._scalar()
        self._check_grad(gy)
        if self.x1.requires_grad:
            self.x1.acc_grad(gy / c)
        if self.x2.requires_grad:
            self.x2.acc_grad(np.sum(-gy * self.x1.value / (c * c)))
