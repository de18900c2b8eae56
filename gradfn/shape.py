"""
Shape and selection functions.

Every forward returns a fresh array, never a view of an operand. Every backward is the structural
inverse of its forward: the gradient is scattered into zeros shaped like the operand, or split
back by the sizes recorded during forward.
"""

import logging
from typing import List, Optional, Tuple

import numpy as np

from gradfn.errors import ConfigurationError, ShapeMismatchError
from gradfn.tensor import Function, Operand, check_same_shape, check_scalar, is_vector

logger = logging.getLogger(__name__)


def _check_non_negative(op_name: str, **indices: int) -> None:
    for key, value in indices.items():
        if value < 0:
            raise ConfigurationError(f"{op_name}: {key} must be non-negative, got {value}")


def _check_in_range(op_name: str, what: str, index: int, size: int) -> None:
    if index >= size:
        raise ConfigurationError(f"{op_name}: {what} {index} out of range for size {size}")


def _check_grad_shape(op_name: str, gy: np.ndarray, expected: Tuple[int, ...]) -> None:
    if gy.shape != tuple(expected):
        raise ShapeMismatchError(
            op_name,
            f"gradient with incompatible shape: expected {tuple(expected)}, got {gy.shape}",
            expected=tuple(expected),
            actual=gy.shape,
        )


class At(Function):
    """Select the element at ``(i, j)`` as a 1x1 output."""

    def __init__(self, x: Operand, i: int, j: int):
        _check_non_negative(type(self).__name__, i=i, j=j)
        super().__init__(x)
        self.x = x
        self.i = i
        self.j = j

    def _forward(self) -> np.ndarray:
        rows, cols = self.x.value.shape
        _check_in_range(self.name, "row", self.i, rows)
        _check_in_range(self.name, "col", self.j, cols)
        return self.x.value[self.i : self.i + 1, self.j : self.j + 1].copy()

    def _backward(self, gy: np.ndarray) -> None:
        check_scalar(self.name, gy, what="gradient")
        if self.x.requires_grad:
            gx = np.zeros_like(self.x.value)
            gx[self.i, self.j] = gy.item()
            self.x.acc_grad(gx)


class AtVec(Function):
    """Select the element at flat (row-major) index ``i`` as a 1x1 output."""

    def __init__(self, x: Operand, i: int):
        _check_non_negative(type(self).__name__, i=i)
        super().__init__(x)
        self.x = x
        self.i = i

    def _forward(self) -> np.ndarray:
        _check_in_range(self.name, "index", self.i, self.x.value.size)
        return np.array([[self.x.value.flat[self.i]]], dtype=self.x.value.dtype)

    def _backward(self, gy: np.ndarray) -> None:
        check_scalar(self.name, gy, what="gradient")
        if self.x.requires_grad:
            gx = np.zeros_like(self.x.value)
            gx.flat[self.i] = gy.item()
            self.x.acc_grad(gx)


class RowView(Function):
    """Select one row as a ``1 x cols`` output."""

    def __init__(self, x: Operand, row: int):
        _check_non_negative(type(self).__name__, row=row)
        super().__init__(x)
        self.x = x
        self.row = row

    def _forward(self) -> np.ndarray:
        _check_in_range(self.name, "row", self.row, self.x.value.shape[0])
        return self.x.value[self.row : self.row + 1, :].copy()

    def _backward(self, gy: np.ndarray) -> None:
        _check_grad_shape(self.name, gy, (1, self.x.value.shape[1]))
        if self.x.requires_grad:
            gx = np.zeros_like(self.x.value)
            gx[self.row, :] = gy[0, :]
            self.x.acc_grad(gx)


class ColView(Function):
    """Select one column as a ``rows x 1`` output."""

    def __init__(self, x: Operand, col: int):
        _check_non_negative(type(self).__name__, col=col)
        super().__init__(x)
        self.x = x
        self.col = col

    def _forward(self) -> np.ndarray:
        _check_in_range(self.name, "col", self.col, self.x.value.shape[1])
        return self.x.value[:, self.col : self.col + 1].copy()

    def _backward(self, gy: np.ndarray) -> None:
        _check_grad_shape(self.name, gy, (self.x.value.shape[0], 1))
        if self.x.requires_grad:
            gx = np.zeros_like(self.x.value)
            gx[:, self.col] = gy[:, 0]
            self.x.acc_grad(gx)


class Slice(Function):
    """The half-open window ``[from_row, to_row) x [from_col, to_col)``."""

    def __init__(
        self, x: Operand, from_row: int, from_col: int, to_row: int, to_col: int
    ):
        name = type(self).__name__
        _check_non_negative(
            name, from_row=from_row, from_col=from_col, to_row=to_row, to_col=to_col
        )
        if from_row > to_row or from_col > to_col:
            raise ConfigurationError(
                f"{name}: inverted bounds [{from_row}:{to_row}, {from_col}:{to_col}]"
            )
        super().__init__(x)
        self.x = x
        self.from_row = from_row
        self.from_col = from_col
        self.to_row = to_row
        self.to_col = to_col

    def _forward(self) -> np.ndarray:
        rows, cols = self.x.value.shape
        if self.to_row > rows or self.to_col > cols:
            raise ConfigurationError(
                f"{self.name}: window [{self.from_row}:{self.to_row}, "
                f"{self.from_col}:{self.to_col}] out of range for shape {(rows, cols)}"
            )
        return self.x.value[self.from_row : self.to_row, self.from_col : self.to_col].copy()

    def _backward(self, gy: np.ndarray) -> None:
        _check_grad_shape(
            self.name, gy, (self.to_row - self.from_row, self.to_col - self.from_col)
        )
        if self.x.requires_grad:
            gx = np.zeros_like(self.x.value)
            gx[self.from_row : self.to_row, self.from_col : self.to_col] = gy
            self.x.acc_grad(gx)


class Reshape(Function):
    """Row-major reshape to ``(rows, cols)``. The number of elements must not change."""

    def __init__(self, x: Operand, rows: int, cols: int):
        _check_non_negative(type(self).__name__, rows=rows, cols=cols)
        super().__init__(x)
        self.x = x
        self.rows = rows
        self.cols = cols

    def _forward(self) -> np.ndarray:
        size = self.x.value.size
        if self.rows * self.cols != size:
            raise ShapeMismatchError(
                self.name,
                f"cannot reshape {self.x.value.shape} into {(self.rows, self.cols)}",
                expected=(size,),
                actual=(self.rows * self.cols,),
            )
        return self.x.value.reshape(self.rows, self.cols).copy()

    def _backward(self, gy: np.ndarray) -> None:
        _check_grad_shape(self.name, gy, (self.rows, self.cols))
        if self.x.requires_grad:
            self.x.acc_grad(gy.reshape(self.x.value.shape))


class Flatten(Function):
    """Row-major flattening into a ``(size, 1)`` column vector."""

    def __init__(self, x: Operand):
        super().__init__(x)
        self.x = x

    def _forward(self) -> np.ndarray:
        return self.x.value.reshape(-1, 1).copy()

    def _backward(self, gy: np.ndarray) -> None:
        _check_grad_shape(self.name, gy, (self.x.value.size, 1))
        if self.x.requires_grad:
            self.x.acc_grad(gy.reshape(self.x.value.shape))


class Concat(Function):
    """
    All elements of all operands, row-major, as one column vector.

    Backward splits ``gy`` by the operand sizes recorded during forward.
    """

    _cache = ("shapes",)

    def __init__(self, *xs: Operand):
        if not xs:
            raise ConfigurationError(f"{type(self).__name__}: at least one operand is required")
        super().__init__(*xs)
        self.xs = xs
        self.shapes: Optional[List[Tuple[int, int]]] = None

    def _forward(self) -> np.ndarray:
        self.shapes = [x.value.shape for x in self.xs]
        return np.concatenate([x.value.reshape(-1) for x in self.xs]).reshape(-1, 1)

    def _backward(self, gy: np.ndarray) -> None:
        total = sum(rows * cols for rows, cols in self.shapes)
        _check_grad_shape(self.name, gy, (total, 1))
        flat = gy.reshape(-1)
        offset = 0
        for x, (rows, cols) in zip(self.xs, self.shapes):
            size = rows * cols
            if x.requires_grad:
                x.acc_grad(flat[offset : offset + size].reshape(rows, cols))
            offset += size


class Stack(Function):
    """One row per operand. All operands must have the same number of elements."""

    def __init__(self, *xs: Operand):
        if not xs:
            raise ConfigurationError(f"{type(self).__name__}: at least one operand is required")
        super().__init__(*xs)
        self.xs = xs

    def _forward(self) -> np.ndarray:
        size = self.xs[0].value.size
        for x in self.xs[1:]:
            if x.value.size != size:
                raise ShapeMismatchError(
                    self.name,
                    f"operands must have the same size, got {size} and {x.value.size}",
                    expected=(size,),
                    actual=(x.value.size,),
                )
        return np.stack([x.value.reshape(-1) for x in self.xs])

    def _backward(self, gy: np.ndarray) -> None:
        _check_grad_shape(self.name, gy, (len(self.xs), self.xs[0].value.size))
        for i, x in enumerate(self.xs):
            if x.requires_grad:
                x.acc_grad(gy[i].reshape(x.value.shape))


class AppendRows(Function):
    """``x`` with each vector in ``vs`` appended as a new row. Each vector has ``x.cols`` elements."""

    def __init__(self, x: Operand, *vs: Operand):
        super().__init__(x, *vs)
        self.x = x
        self.vs = vs

    def _forward(self) -> np.ndarray:
        cols = self.x.value.shape[1]
        rows = [self.x.value]
        for v in self.vs:
            if not is_vector(v.value) or v.value.size != cols:
                raise ShapeMismatchError(
                    self.name,
                    f"appended rows must be vectors of size {cols}, got shape {v.value.shape}",
                    expected=(1, cols),
                    actual=v.value.shape,
                )
            rows.append(v.value.reshape(1, cols))
        return np.concatenate(rows, axis=0)

    def _backward(self, gy: np.ndarray) -> None:
        rows, cols = self.x.value.shape
        _check_grad_shape(self.name, gy, (rows + len(self.vs), cols))
        if self.x.requires_grad:
            self.x.acc_grad(gy[:rows])
        for k, v in enumerate(self.vs):
            if v.requires_grad:
                v.acc_grad(gy[rows + k].reshape(v.value.shape))


class RotateR(Function):
    """Right circular shift of the row-major elements by ``i`` positions. The shape is kept."""

    def __init__(self, x: Operand, i: int):
        _check_non_negative(type(self).__name__, i=i)
        super().__init__(x)
        self.x = x
        self.i = i

    def _forward(self) -> np.ndarray:
        x = self.x.value
        return np.roll(x.reshape(-1), self.i).reshape(x.shape)

    def _backward(self, gy: np.ndarray) -> None:
        check_same_shape(self.name, self.x.value, gy, what="input and gradient")
        if self.x.requires_grad:
            self.x.acc_grad(np.roll(gy.reshape(-1), -self.i).reshape(gy.shape))
