import logging
from typing import Callable, List, Optional, Tuple

import numpy as np

from gradfn.errors import DomainError, ShapeMismatchError
from gradfn.parallel import fork_join
from gradfn.tensor import Function, Operand, check_scalar, is_vector

logger = logging.getLogger(__name__)


class Mul(Function):
    r"""
    Matrix multiplication $Y = X_1 X_2$.

    Backward:
    $$
    \frac{\partial L}{\partial X_1} = g_y X_2^T
    \qquad
    \frac{\partial L}{\partial X_2} = X_1^T g_y
    $$

    The two products are independent and run concurrently.
    """

    def __init__(self, x1: Operand, x2: Operand):
        super().__init__(x1, x2)
        self.x1 = x1
        self.x2 = x2

    def _forward(self) -> np.ndarray:
        a, b = self.x1.value, self.x2.value
        if a.shape[1] != b.shape[0]:
            raise ShapeMismatchError(
                self.name,
                f"matrices with not compatible size: {a.shape} x {b.shape}",
                expected=(a.shape[1], "*"),
                actual=b.shape,
            )
        return a @ b

    def _backward(self, gy: np.ndarray) -> None:
        a, b = self.x1.value, self.x2.value
        expected = (a.shape[0], b.shape[1])
        if gy.shape != expected:
            raise ShapeMismatchError(
                self.name,
                f"gradient with incompatible shape: expected {expected}, got {gy.shape}",
                expected=expected,
                actual=gy.shape,
            )

        tasks: List[Callable[[], None]] = []
        if self.x1.requires_grad:
            tasks.append(lambda: self.x1.acc_grad(gy @ b.T))
        if self.x2.requires_grad:
            if gy.shape[1] == 1:
                # column gradient: one matrix-vector product
                tasks.append(lambda: self.x2.acc_grad((gy.T @ a).T))
            else:
                tasks.append(lambda: self.x2.acc_grad(a.T @ gy))
        fork_join(*tasks)


class MulT(Function):
    r"""
    Transposed matrix multiplication $Y = X_1^T X_2$, without materializing $X_1^T$ in the graph.

    Backward:
    $$
    \frac{\partial L}{\partial X_1} = X_2 g_y^T
    \qquad
    \frac{\partial L}{\partial X_2} = X_1 g_y
    $$
    """

    def __init__(self, x1: Operand, x2: Operand):
        super().__init__(x1, x2)
        self.x1 = x1
        self.x2 = x2

    def _forward(self) -> np.ndarray:
        a, b = self.x1.value, self.x2.value
        if a.shape[0] != b.shape[0]:
            raise ShapeMismatchError(
                self.name,
                f"matrices with not compatible size: {a.shape}^T x {b.shape}",
                expected=(a.shape[0], "*"),
                actual=b.shape,
            )
        return a.T @ b

    def _backward(self, gy: np.ndarray) -> None:
        a, b = self.x1.value, self.x2.value
        expected = (a.shape[1], b.shape[1])
        if gy.shape != expected:
            raise ShapeMismatchError(
                self.name,
                f"gradient with incompatible shape: expected {expected}, got {gy.shape}",
                expected=expected,
                actual=gy.shape,
            )

        tasks: List[Callable[[], None]] = []
        if self.x1.requires_grad:
            tasks.append(lambda: self.x1.acc_grad(b @ gy.T))
        if self.x2.requires_grad:
            tasks.append(lambda: self.x2.acc_grad(a @ gy))
        fork_join(*tasks)


class Affine(Function):
    r"""
    Affine transformation $Y = B + W_1 X_1 + W_2 X_2 + \ldots + W_n X_n$.

    The operands are a bias followed by ``(W, X)`` pairs. Pairs whose ``X`` is ``None`` are
    dropped, which lets callers pass optional inputs (e.g. no previous hidden state) straight
    through.

    Backward:
    $$
    \frac{\partial L}{\partial B} = g_y
    \qquad
    \frac{\partial L}{\partial W_i} = g_y X_i^T
    \qquad
    \frac{\partial L}{\partial X_i} = W_i^T g_y
    $$

    Every pair is validated against ``gy`` before any gradient is accumulated. The branches of
    all pairs then run in a single fork-join.
    """

    def __init__(self, b: Operand, w1: Operand, x1: Operand, *wx_pairs: Optional[Operand]):
        if len(wx_pairs) % 2 != 0:
            raise DomainError(
                f"{type(self).__name__}: invalid number of arguments, "
                f"expected (W, X) pairs, got {len(wx_pairs)} extra operands"
            )
        pairs: List[Tuple[Operand, Operand]] = [(w1, x1)]
        for i in range(0, len(wx_pairs), 2):
            w, x = wx_pairs[i], wx_pairs[i + 1]
            if x is None:
                continue
            pairs.append((w, x))

        operands: List[Operand] = [b]
        for w, x in pairs:
            operands.extend((w, x))
        super().__init__(*operands)
        self.b = b
        self.pairs = pairs

    def _forward(self) -> np.ndarray:
        y = self.b.value.copy()
        for w, x in self.pairs:
            wv, xv = w.value, x.value
            if wv.shape[1] != xv.shape[0]:
                raise ShapeMismatchError(
                    self.name,
                    f"matrices with not compatible size: {wv.shape} x {xv.shape}",
                    expected=(wv.shape[1], "*"),
                    actual=xv.shape,
                )
            wx = wv @ xv
            if wx.shape != y.shape:
                raise ShapeMismatchError(
                    self.name,
                    f"bias and product have incompatible shapes: {y.shape} vs {wx.shape}",
                    expected=y.shape,
                    actual=wx.shape,
                )
            y = y + wx
        return y

    def _backward(self, gy: np.ndarray) -> None:
        if gy.shape != self.b.value.shape:
            raise ShapeMismatchError(
                self.name,
                f"bias and gradient have incompatible shapes: expected {self.b.value.shape}, "
                f"got {gy.shape}",
                expected=self.b.value.shape,
                actual=gy.shape,
            )
        for w, x in self.pairs:
            if w.value.shape[0] != gy.shape[0]:
                raise ShapeMismatchError(
                    self.name,
                    f"weight rows must match gradient rows: {w.value.shape} vs {gy.shape}",
                    expected=(gy.shape[0], "*"),
                    actual=w.value.shape,
                )
            if x.value.shape[1] != gy.shape[1]:
                raise ShapeMismatchError(
                    self.name,
                    f"input cols must match gradient cols: {x.value.shape} vs {gy.shape}",
                    expected=("*", gy.shape[1]),
                    actual=x.value.shape,
                )

        if self.b.requires_grad:
            self.b.acc_grad(gy)

        tasks: List[Callable[[], None]] = []
        for w, x in self.pairs:
            wv, xv = w.value, x.value
            if w.requires_grad:
                tasks.append(lambda w=w, xv=xv: w.acc_grad(gy @ xv.T))
            if x.requires_grad:
                tasks.append(lambda x=x, wv=wv: x.acc_grad(wv.T @ gy))
        fork_join(*tasks)


class Dot(Function):
    """
    Dot product of two same-shaped matrices, or of two vectors of the same size (a row and a
    column vector can be mixed). The output is 1x1.
    """

    def __init__(self, x1: Operand, x2: Operand):
        super().__init__(x1, x2)
        self.x1 = x1
        self.x2 = x2

    def _check_operands(self) -> None:
        a, b = self.x1.value, self.x2.value
        if a.shape == b.shape:
            return
        if is_vector(a) and is_vector(b) and a.size == b.size:
            return
        raise ShapeMismatchError(
            self.name,
            f"operands have incompatible shapes: {a.shape} and {b.shape}",
            expected=a.shape,
            actual=b.shape,
        )

    def _forward(self) -> np.ndarray:
        self._check_operands()
        return np.array([[np.sum(self.x1.value.ravel() * self.x2.value.ravel())]])

    def _backward(self, gy: np.ndarray) -> None:
        check_scalar(self.name, gy, what="gradient")
        g = gy.item()
        a, b = self.x1.value, self.x2.value
        if self.x1.requires_grad:
            self.x1.acc_grad(b.reshape(a.shape) * g)
        if self.x2.requires_grad:
            self.x2.acc_grad(a.reshape(b.shape) * g)


class Transpose(Function):
    r"""
    Transpose of a matrix. The output is a copy, and backward transposes the gradient back:

    $$
    y = x^T, \qquad \frac{\partial L}{\partial x} = g_y^T
    $$
    """

    def __init__(self, x: Operand):
        super().__init__(x)
        self.x = x

    def _forward(self) -> np.ndarray:
        return self.x.value.T.copy()

    def _backward(self, gy: np.ndarray) -> None:
        rows, cols = self.x.value.shape
        if gy.shape != (cols, rows):
            raise ShapeMismatchError(
                self.name,
                f"gradient with incompatible shape: expected {(cols, rows)}, got {gy.shape}",
                expected=(cols, rows),
                actual=gy.shape,
            )
        if self.x.requires_grad:
            self.x.acc_grad(gy.T)
