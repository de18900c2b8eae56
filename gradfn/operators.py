"""
Graph-building API.

Every builder evaluates its function eagerly and returns the resulting :class:`Operator` node, so
expressions compose like ordinary function calls and ``gradfn.tensor.backward`` can later walk
the graph they built. The composite operators at the end of the module are written only in terms
of the builders above them.

Examples:
    >>> w = Variable([[0.5, -0.5], [1.0, 2.0]])
    >>> b = Variable([0.1, 0.2])
    >>> x = Variable([1.0, 2.0], requires_grad=False)
    >>> y = tanh(affine(b, w, x))
    >>> backward(reduce_sum(y))
    >>> w.grad.shape
    (2, 2)
"""

import functools
import logging
from typing import Callable, List, Optional, Sequence

import numpy as np

from gradfn.elementwise import (
    Add,
    AddScalar,
    Div,
    DivScalar,
    Identity,
    Max,
    Min,
    Pow,
    Prod,
    ProdScalar,
    ReverseSubScalar,
    Square,
    Sub,
    SubScalar,
)
from gradfn.errors import ConfigurationError, ShapeMismatchError
from gradfn.functional import (  # noqa: F401
    abs,
    celu,
    cos,
    elu,
    exp,
    gelu,
    hard_sigmoid,
    hard_tanh,
    leaky_relu,
    log,
    mish,
    neg,
    reciprocal,
    relu,
    selu,
    sigmoid,
    silu,
    sin,
    soft_shrink,
    softplus,
    softsign,
    sqrt,
    swish,
    swish_b,
    tan,
    tanh,
    threshold,
)
from gradfn.linalg import Affine, Dot, Mul, MulT, Transpose
from gradfn.parallel import fork_join
from gradfn.projection import MaxPooling, Softmax, SparseMax, SparseMaxLoss
from gradfn.reduce import ReduceMax, ReduceMean, ReduceSum, ScalarMax
from gradfn.shape import (
    AppendRows,
    At,
    AtVec,
    ColView,
    Concat,
    Flatten,
    Reshape,
    RotateR,
    RowView,
    Slice,
    Stack,
)
from gradfn.stochastic import Dropout
from gradfn.tensor import Operand, Operator, Variable, backward, scalar  # noqa: F401

logger = logging.getLogger(__name__)


########### Element-wise ###############
def add(x1: Optional[Operand], x2: Operand) -> Operator:
    """
    Element-wise sum. ``x1`` may be None, in which case the result is a copy of ``x2``; this
    lets a running sum start from nothing.

    Args:
        x1 (Operand, optional): The first addend, or None.
        x2 (Operand): The second addend, with the shape of ``x1``.

    Returns:
        Operator: The node holding ``x1 + x2``.
    """
    if x1 is None:
        return identity(x2)
    return Add.apply(x1, x2)


def sub(x1: Operand, x2: Operand) -> Operator:
    """
    Element-wise difference.

    Args:
        x1 (Operand): The minuend.
        x2 (Operand): The subtrahend, with the shape of ``x1``.

    Returns:
        Operator: The node holding ``x1 - x2``.
    """
    return Sub.apply(x1, x2)


def prod(x1: Operand, x2: Operand) -> Operator:
    """
    Element-wise (Hadamard) product.

    Args:
        x1 (Operand): The first factor.
        x2 (Operand): The second factor, with the shape of ``x1``.

    Returns:
        Operator: The node holding ``x1 * x2``.
    """
    return Prod.apply(x1, x2)


def div(x1: Operand, x2: Operand) -> Operator:
    """
    Element-wise division.

    Args:
        x1 (Operand): The dividend.
        x2 (Operand): The divisor, with the shape of ``x1``.

    Returns:
        Operator: The node holding ``x1 / x2``.
    """
    return Div.apply(x1, x2)


def elementwise_max(x1: Operand, x2: Operand) -> Operator:
    """
    Element-wise maximum. Where the operands tie neither receives a gradient.

    Args:
        x1 (Operand): The first operand.
        x2 (Operand): The second operand, with the shape of ``x1``.

    Returns:
        Operator: The node holding the larger value of each pair.
    """
    return Max.apply(x1, x2)


def elementwise_min(x1: Operand, x2: Operand) -> Operator:
    """
    Element-wise minimum. Where the operands tie neither receives a gradient.

    Args:
        x1 (Operand): The first operand.
        x2 (Operand): The second operand, with the shape of ``x1``.

    Returns:
        Operator: The node holding the smaller value of each pair.
    """
    return Min.apply(x1, x2)


def pow(x: Operand, power: float) -> Operator:  # noqa: A001
    """
    Raise every element to a constant power.

    Args:
        x (Operand): The base.
        power (float): The exponent. It is a constant and receives no gradient.

    Returns:
        Operator: The node holding ``x ** power``.
    """
    return Pow.apply(x, power)


def square(x: Operand) -> Operator:
    """
    Args:
        x (Operand): The input operand.

    Returns:
        Operator: The node holding ``x * x``.
    """
    return Square.apply(x)


def identity(x: Operand) -> Operator:
    """
    Copy ``x`` into a new node. The gradient passes through unchanged.

    Args:
        x (Operand): The input operand.

    Returns:
        Operator: A node holding a copy of ``x``.
    """
    return Identity.apply(x)


def add_scalar(x1: Operand, x2: Operand) -> Operator:
    """
    ``x1 + x2`` where ``x2`` is 1x1.

    Args:
        x1 (Operand): The tensor operand.
        x2 (Operand): The 1x1 operand, added to every element of ``x1``.

    Returns:
        Operator: The node holding the sum, shaped like ``x1``.
    """
    return AddScalar.apply(x1, x2)


def sub_scalar(x1: Operand, x2: Operand) -> Operator:
    """
    ``x1 - x2`` where ``x2`` is 1x1.

    Args:
        x1 (Operand): The tensor operand.
        x2 (Operand): The 1x1 operand, subtracted from every element of ``x1``.

    Returns:
        Operator: The node holding the difference, shaped like ``x1``.
    """
    return SubScalar.apply(x1, x2)


def reverse_sub_scalar(x1: Operand, x2: Operand) -> Operator:
    """
    ``x2 - x1`` where ``x2`` is 1x1.

    Args:
        x1 (Operand): The tensor operand, subtracted from ``x2``.
        x2 (Operand): The 1x1 operand.

    Returns:
        Operator: The node holding the difference, shaped like ``x1``.
    """
    return ReverseSubScalar.apply(x1, x2)


# Same argument order as reverse_sub_scalar: x2 - x1 with x2 a 1x1 operand
reverse_sub = reverse_sub_scalar


def prod_scalar(x1: Operand, x2: Operand) -> Operator:
    """
    ``x1 * x2`` where ``x2`` is 1x1.

    Args:
        x1 (Operand): The tensor operand.
        x2 (Operand): The 1x1 factor.

    Returns:
        Operator: The scaled node, shaped like ``x1``.
    """
    return ProdScalar.apply(x1, x2)


def div_scalar(x1: Operand, x2: Operand) -> Operator:
    """
    ``x1 / x2`` where ``x2`` is 1x1.

    Args:
        x1 (Operand): The tensor operand.
        x2 (Operand): The 1x1 divisor.

    Returns:
        Operator: The scaled node, shaped like ``x1``.
    """
    return DivScalar.apply(x1, x2)


########### Linear algebra ###############
def mul(x1: Operand, x2: Operand) -> Operator:
    """
    Matrix product ``x1 @ x2``.

    Args:
        x1 (Operand): The left matrix, ``(m, k)``.
        x2 (Operand): The right matrix, ``(k, n)``.

    Returns:
        Operator: The ``(m, n)`` product.
    """
    return Mul.apply(x1, x2)


def mul_t(x1: Operand, x2: Operand) -> Operator:
    """
    Matrix product ``x1.T @ x2``, without materializing the transpose.

    Args:
        x1 (Operand): The left matrix, ``(k, m)``.
        x2 (Operand): The right matrix, ``(k, n)``.

    Returns:
        Operator: The ``(m, n)`` product.
    """
    return MulT.apply(x1, x2)


def affine(b: Operand, w1: Operand, x1: Operand, *wx_pairs: Optional[Operand]) -> Operator:
    """
    ``b + w1 @ x1 + w2 @ x2 + ...``; pairs whose ``x`` is None are skipped.

    Args:
        b (Operand): The bias, shaped like every ``w @ x`` product.
        w1 (Operand): The first weight matrix.
        x1 (Operand): The first input.
        *wx_pairs (Operand, optional): Further ``w, x`` pairs, flattened.

    Returns:
        Operator: The node holding the affine combination.
    """
    return Affine.apply(b, w1, x1, *wx_pairs)


def dot(x1: Operand, x2: Operand) -> Operator:
    """
    Sum of the element-wise product. Two vectors of the same size may differ in orientation.

    Args:
        x1 (Operand): The first operand.
        x2 (Operand): The second operand.

    Returns:
        Operator: The 1x1 dot product.
    """
    return Dot.apply(x1, x2)


def transpose(x: Operand) -> Operator:
    """
    Args:
        x (Operand): The input matrix.

    Returns:
        Operator: A node holding ``x.T``.
    """
    return Transpose.apply(x)


########### Reductions ###############
def reduce_sum(x: Operand) -> Operator:
    """
    Args:
        x (Operand): The input operand.

    Returns:
        Operator: The 1x1 sum of all the elements.
    """
    return ReduceSum.apply(x)


def reduce_mean(x: Operand) -> Operator:
    """
    Args:
        x (Operand): The input operand, with at least one element.

    Returns:
        Operator: The 1x1 mean of all the elements.
    """
    return ReduceMean.apply(x)


def reduce_max(x: Operand) -> Operator:
    """
    Args:
        x (Operand): The input operand, with at least one element.

    Returns:
        Operator: The 1x1 largest element. Its gradient goes to the first occurrence.
    """
    return ReduceMax.apply(x)


def scalar_max(xs: Sequence[Operand]) -> Operator:
    """
    Args:
        xs (Sequence[Operand]): 1x1 operands, at least one.

    Returns:
        Operator: A 1x1 node holding the largest of them.
    """
    return ScalarMax.apply(*xs)


########### Shape and selection ###############
def at(x: Operand, i: int, j: int) -> Operator:
    """
    Args:
        x (Operand): The input matrix.
        i (int): Row index.
        j (int): Column index.

    Returns:
        Operator: The 1x1 element ``x[i, j]``.
    """
    return At.apply(x, i, j)


def at_vec(x: Operand, i: int) -> Operator:
    """
    Args:
        x (Operand): The input operand, read in row-major order.
        i (int): Flat index.

    Returns:
        Operator: The 1x1 element at flat position ``i``.
    """
    return AtVec.apply(x, i)


def row_view(x: Operand, row: int) -> Operator:
    """
    Args:
        x (Operand): The input matrix.
        row (int): Row index.

    Returns:
        Operator: A ``(1, cols)`` copy of the row.
    """
    return RowView.apply(x, row)


def col_view(x: Operand, col: int) -> Operator:
    """
    Args:
        x (Operand): The input matrix.
        col (int): Column index.

    Returns:
        Operator: A ``(rows, 1)`` copy of the column.
    """
    return ColView.apply(x, col)


def slice(  # noqa: A001
    x: Operand, from_row: int, from_col: int, to_row: int, to_col: int
) -> Operator:
    """
    Copy the sub-matrix ``x[from_row:to_row, from_col:to_col]``.

    Args:
        x (Operand): The input matrix.
        from_row (int): First row, inclusive.
        from_col (int): First column, inclusive.
        to_row (int): Last row, exclusive.
        to_col (int): Last column, exclusive.

    Returns:
        Operator: The sub-matrix.
    """
    return Slice.apply(x, from_row, from_col, to_row, to_col)


def reshape(x: Operand, rows: int, cols: int) -> Operator:
    """
    Args:
        x (Operand): The input operand.
        rows (int): New number of rows.
        cols (int): New number of columns. ``rows * cols`` must equal the size of ``x``.

    Returns:
        Operator: The reshaped copy, filled in row-major order.
    """
    return Reshape.apply(x, rows, cols)


def flatten(x: Operand) -> Operator:
    """
    Args:
        x (Operand): The input operand.

    Returns:
        Operator: A ``(size, 1)`` column vector of the elements in row-major order.
    """
    return Flatten.apply(x)


def concat(*xs: Operand) -> Operator:
    """
    Args:
        *xs (Operand): Vectors to join.

    Returns:
        Operator: A single column vector with all their elements, in order.
    """
    return Concat.apply(*xs)


def stack(*xs: Operand) -> Operator:
    """
    Args:
        *xs (Operand): Vectors of the same size.

    Returns:
        Operator: A matrix whose ``i``-th row holds the elements of ``xs[i]``.
    """
    return Stack.apply(*xs)


def append_rows(x: Operand, *vs: Operand) -> Operator:
    """
    Args:
        x (Operand): The matrix to extend.
        *vs (Operand): Vectors with as many elements as ``x`` has columns.

    Returns:
        Operator: ``x`` with one extra row per vector.
    """
    return AppendRows.apply(x, *vs)


def rotate_r(x: Operand, i: int) -> Operator:
    """
    Right circular shift of the row-major elements.

    Args:
        x (Operand): The input operand.
        i (int): Number of places to shift.

    Returns:
        Operator: The rotated copy, shaped like ``x``.
    """
    return RotateR.apply(x, i)


########### Stochastic and projections ###############
def dropout(
    x: Operand, p: float, rng: Optional[np.random.Generator] = None
) -> Operand:
    """
    Apply dropout with drop probability ``p``. With ``p == 0`` the input itself is returned and
    no node is added to the graph.

    Args:
        x (Operand): The input operand.
        p (float): Drop probability, in ``[0, 1]``.
        rng (np.random.Generator, optional): Source of the mask. Defaults to the generator
            seeded from the configuration.

    Returns:
        Operand: The dropped-out node, or ``x`` when ``p == 0``.
    """
    if p == 0.0:
        return x
    return Dropout.apply(x, p, rng)


def dropout_func(
    p: float, rng: Optional[np.random.Generator] = None
) -> Callable[[Operand], Operand]:
    """
    Bind the dropout probability once, for use with :func:`map` and :func:`map_concurrent`.

    Args:
        p (float): Drop probability, in ``[0, 1]``.
        rng (np.random.Generator, optional): Source of the masks.

    Returns:
        Callable[[Operand], Operand]: A one-argument :func:`dropout`.
    """
    return functools.partial(dropout, p=p, rng=rng)


def softmax(x: Operand) -> Operator:
    """
    Args:
        x (Operand): The scores.

    Returns:
        Operator: The softmax over all the elements, shaped like ``x``.
    """
    return Softmax.apply(x)


def sparsemax(x: Operand) -> Operator:
    """
    Args:
        x (Operand): The scores.

    Returns:
        Operator: The sparsemax projection over all the elements, shaped like ``x``.
    """
    return SparseMax.apply(x)


def sparsemax_loss(x: Operand) -> Operator:
    """
    Args:
        x (Operand): The scores.

    Returns:
        Operator: The sparsemax loss term, shaped like ``x``.
    """
    return SparseMaxLoss.apply(x)


def max_pooling(x: Operand, rows: int, cols: int) -> Operator:
    """
    Args:
        x (Operand): The input matrix. Its dimensions must be multiples of the window's.
        rows (int): Window height.
        cols (int): Window width.

    Returns:
        Operator: The maximum of every window.
    """
    return MaxPooling.apply(x, rows, cols)


########### Composites ###############
def _check_not_empty(op_name: str, xs: Sequence[Operand]) -> None:
    if len(xs) == 0:
        raise ConfigurationError(f"{op_name}: at least one operand is required")


def add_all(xs: Sequence[Operand]) -> Operator:
    """
    Element-wise sum of all the operands, which must share the same shape.

    Args:
        xs (Sequence[Operand]): The addends, at least one.

    Returns:
        Operator: The node holding their sum.
    """
    _check_not_empty("add_all", xs)
    total = None
    for x in xs:
        total = add(total, x)
    return total


def sum(*xs: Operand) -> Operator:  # noqa: A001
    """
    Variadic form of :func:`add_all`.

    Args:
        *xs (Operand): The addends, at least one.

    Returns:
        Operator: The node holding their sum.
    """
    return add_all(xs)


def mean(xs: Sequence[Operand]) -> Operator:
    """
    Element-wise average of the operands.

    Args:
        xs (Sequence[Operand]): Same-shaped operands, at least one.

    Returns:
        Operator: The node holding their average.
    """
    _check_not_empty("mean", xs)
    total = add_all(xs)
    n = scalar(float(len(xs)), dtype=total.value.dtype)
    return div_scalar(total, n)


def maximum(xs: Sequence[Operand]) -> Operand:
    """Element-wise maximum of the operands."""
    _check_not_empty("maximum", xs)
    result = xs[0]
    for x in xs[1:]:
        result = elementwise_max(result, x)
    return result


def minimum(xs: Sequence[Operand]) -> Operand:
    """Element-wise minimum of the operands."""
    _check_not_empty("minimum", xs)
    result = xs[0]
    for x in xs[1:]:
        result = elementwise_min(result, x)
    return result


def bilinear(w: Operand, x1: Operand, x2: Operand) -> Operator:
    r"""Bilinear form $x_1^T W x_2$."""
    return mul(mul_t(x1, w), x2)


def biaffine(
    w: Operand, u: Operand, v: Operand, b: Operand, x1: Operand, x2: Operand
) -> Operator:
    r"""Biaffine form $x_1^T W x_2 + U^T x_1 + V^T x_2 + b$."""
    return add(add(add(bilinear(w, x1, x2), mul_t(u, x1)), mul_t(v, x2)), b)


def positive_elu(x: Operand) -> Operator:
    """``ELU(x) + 1``, always positive."""
    one = scalar(1.0, dtype=x.value.dtype)
    return add_scalar(elu(x, one), one)


def log_softmax(x: Operand) -> Operator:
    """
    Args:
        x (Operand): The scores.

    Returns:
        Operator: ``log(softmax(x))``.
    """
    return log(softmax(x))


def log_sum_exp(*xs: Operand) -> Operator:
    r"""
    Numerically stable $\log \sum_i e^{x_i}$.

    With a single operand the sum runs over its elements, otherwise over a list of 1x1 operands.
    In both cases the maximum is subtracted before exponentiating and added back afterwards.

    Args:
        *xs (Operand): One operand of any shape, or several 1x1 operands.

    Returns:
        Operator: The 1x1 result.
    """
    if len(xs) == 0:
        raise ConfigurationError("log_sum_exp: at least one operand is required")
    if len(xs) == 1:
        x = xs[0]
        top = reduce_max(x)
        total = reduce_sum(exp(sub_scalar(x, top)))
        return add(top, log(total))

    top = scalar_max(xs)
    total = None
    for x in xs:
        total = add(total, exp(sub(x, top)))
    return add(top, log(total))


def separate_matrix(x: Operand) -> List[List[Operator]]:
    """Every element of ``x`` as its own 1x1 node, with the layout of ``x``."""
    rows, cols = x.value.shape
    return [[at(x, i, j) for j in range(cols)] for i in range(rows)]


def separate_vec(x: Operand) -> List[Operator]:
    """Every element of ``x`` (row-major) as its own 1x1 node. The inverse of :func:`concat`."""
    return [at_vec(x, i) for i in range(x.value.size)]


def split_vec(x: Operand, chunks: int) -> List[Operator]:
    """
    Split a column vector into ``chunks`` column vectors of equal size.

    Args:
        x (Operand): The vector to split.
        chunks (int): Number of pieces. Must divide the size of ``x``.

    Returns:
        List[Operator]: The pieces, in order.

    Raises:
        ShapeMismatchError: If the size of ``x`` is not a multiple of ``chunks``.
    """
    size = x.value.size
    if chunks <= 0 or size % chunks != 0:
        raise ShapeMismatchError(
            "split_vec",
            f"cannot split {size} elements into {chunks} chunks of equal size",
        )
    step = size // chunks
    return [slice(x, i * step, 0, (i + 1) * step, 1) for i in range(chunks)]


def row_views(x: Operand) -> List[Operator]:
    """Every row of ``x`` as its own ``(1, cols)`` node."""
    return [row_view(x, i) for i in range(x.value.shape[0])]


def col_views(x: Operand) -> List[Operator]:
    """Every column of ``x`` as its own ``(rows, 1)`` node."""
    return [col_view(x, j) for j in range(x.value.shape[1])]


########### Sequences ###############
def map(  # noqa: A001
    mapping: Callable[[Operand], Operand], xs: Sequence[Operand]
) -> List[Operand]:
    """
    Apply ``mapping`` to every operand, in order.

    Args:
        mapping (Callable[[Operand], Operand]): A graph-building function of one operand.
        xs (Sequence[Operand]): The operands.

    Returns:
        List[Operand]: ``[mapping(x) for x in xs]``.
    """
    return [mapping(x) for x in xs]


def map_concurrent(
    mapping: Callable[[Operand], Operand], xs: Sequence[Operand]
) -> List[Operand]:
    """
    Like :func:`map`, but the calls run in the shared worker pool (see
    :func:`gradfn.parallel.fork_join`). The results keep the order of ``xs``.

    ``mapping`` must only build new nodes; it must not call ``backward`` or ``acc_grad`` on
    operands it shares with other calls.
    """
    return fork_join(*[functools.partial(mapping, x) for x in xs])


def _check_same_length(op_name: str, xs1: Sequence[Operand], xs2: Sequence[Operand]) -> None:
    if len(xs1) != len(xs2):
        raise ShapeMismatchError(
            op_name,
            f"arguments must have the same length ({len(xs1)} != {len(xs2)})",
            expected=(len(xs1),),
            actual=(len(xs2),),
        )


def map2(
    mapping: Callable[[Operand, Operand], Operand],
    xs1: Sequence[Operand],
    xs2: Sequence[Operand],
) -> List[Operand]:
    """
    Apply a two-argument ``mapping`` to the items of ``xs1`` and ``xs2`` pairwise.

    Args:
        mapping (Callable[[Operand, Operand], Operand]): A graph-building function.
        xs1 (Sequence[Operand]): First arguments.
        xs2 (Sequence[Operand]): Second arguments, as many as ``xs1``.

    Returns:
        List[Operand]: ``[mapping(a, b) for a, b in zip(xs1, xs2)]``.

    Raises:
        ShapeMismatchError: If the sequences differ in length.
    """
    _check_same_length("map2", xs1, xs2)
    return [mapping(a, b) for a, b in zip(xs1, xs2)]


def map2_concurrent(
    mapping: Callable[[Operand, Operand], Operand],
    xs1: Sequence[Operand],
    xs2: Sequence[Operand],
) -> List[Operand]:
    """The concurrent version of :func:`map2`."""
    _check_same_length("map2_concurrent", xs1, xs2)
    return fork_join(*[functools.partial(mapping, a, b) for a, b in zip(xs1, xs2)])


def pad(
    xs: Sequence[Operand], seq_len: int, padding: Callable[[int], Operand]
) -> List[Operand]:
    """
    Truncate or extend a sequence of operands to exactly ``seq_len`` items.

    Args:
        xs (Sequence[Operand]): The sequence.
        seq_len (int): The target length.
        padding (Callable[[int], Operand]): Called with the position of every missing item
            and returns the operand to put there.

    Returns:
        List[Operand]: The first ``seq_len`` items of ``xs``, followed by padding if ``xs`` is
        shorter.

    Raises:
        ConfigurationError: If ``seq_len`` is negative.
    """
    if seq_len < 0:
        raise ConfigurationError(f"pad: sequence length must be non-negative, got {seq_len}")
    padded = list(xs[:seq_len])
    padded.extend(padding(i) for i in range(len(padded), seq_len))
    return padded
