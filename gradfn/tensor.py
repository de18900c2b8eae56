import enum
import logging
import threading
from abc import ABC, abstractmethod
from typing import (
    Any,
    List,
    Optional,
    Sequence,
    Tuple,
    Union,
)

import numpy as np

from gradfn.errors import MissingCachedStateError, ShapeMismatchError

logger = logging.getLogger(__name__)

ArrayLike = Union[np.ndarray, float, int, Sequence[float], Sequence[Sequence[float]]]


def as_matrix(
    data: ArrayLike, dtype: Optional[Any] = None, op_name: str = "as_matrix"
) -> np.ndarray:
    """
    Normalize ``data`` into the 2-D floating point array every function works with.

    - Python/NumPy scalars become ``(1, 1)`` matrices.
    - 1-D sequences become column vectors ``(n, 1)``.
    - 2-D arrays are kept as they are.

    Floating point arrays keep their precision (float32 or float64) unless ``dtype`` is given;
    anything else is converted to float64. No copy is made when the input already qualifies.

    Args:
        data (ArrayLike): The data to normalize.
        dtype (Any, optional): Target dtype. Defaults to None (keep or float64).
        op_name (str, optional): Name reported in errors. Defaults to "as_matrix".

    Returns:
        np.ndarray: A 2-D floating point array.

    Raises:
        ShapeMismatchError: If the data has more than two dimensions.

    Examples:
        >>> as_matrix([1, 2, 3]).shape
        (3, 1)
        >>> as_matrix(2.0).shape
        (1, 1)
    """
    arr = np.asarray(data)
    if dtype is not None:
        arr = arr.astype(dtype, copy=False)
    elif arr.dtype != np.float32 and arr.dtype != np.float64:
        arr = arr.astype(np.float64)

    if arr.ndim == 0:
        return arr.reshape(1, 1)
    if arr.ndim == 1:
        return arr.reshape(-1, 1)
    if arr.ndim > 2:
        raise ShapeMismatchError(
            op_name, f"tensors must have at most 2 dimensions, got shape {arr.shape}"
        )
    return arr


def check_same_shape(
    op_name: str, expected: np.ndarray, actual: np.ndarray, what: str = "operands"
) -> None:
    """Raise a ShapeMismatchError unless both arrays have exactly the same shape."""
    if expected.shape != actual.shape:
        raise ShapeMismatchError(
            op_name,
            f"{what} have incompatible shapes: expected {expected.shape}, got {actual.shape}",
            expected=expected.shape,
            actual=actual.shape,
        )


def check_scalar(op_name: str, x: np.ndarray, what: str = "operand") -> None:
    """Raise a ShapeMismatchError unless ``x`` holds exactly one element."""
    if x.size != 1:
        raise ShapeMismatchError(
            op_name,
            f"{what} must be a scalar, got shape {x.shape}",
            expected=(1, 1),
            actual=x.shape,
        )


def check_not_empty(op_name: str, x: np.ndarray, what: str = "operand") -> None:
    """Raise a ShapeMismatchError if ``x`` has no elements."""
    if x.size == 0:
        raise ShapeMismatchError(
            op_name,
            f"{what} must have at least one element, got shape {x.shape}",
            actual=x.shape,
        )


def is_vector(x: np.ndarray) -> bool:
    """Whether ``x`` has a single row or a single column."""
    return x.ndim == 2 and (x.shape[0] == 1 or x.shape[1] == 1)


class Operand(ABC):
    """
    The minimal interface every differentiable function works with.

    An operand reports a value, accumulates gradients and tells whether it requires them.
    Several functions may reference the same operand; the operand, not the function, owns
    the aggregation of their gradients, so ``acc_grad`` must be safe to call concurrently.
    """

    @property
    @abstractmethod
    def value(self) -> np.ndarray:
        """The current value. Functions never mutate it."""

    @property
    @abstractmethod
    def requires_grad(self) -> bool:
        """Whether gradients should be computed and accumulated for this operand."""

    @property
    @abstractmethod
    def grad(self) -> Optional[np.ndarray]:
        """The accumulated gradient, or None if nothing was accumulated yet."""

    @abstractmethod
    def acc_grad(self, grad: ArrayLike) -> None:
        """Add ``grad`` to the accumulated gradient."""

    @abstractmethod
    def zero_grad(self) -> None:
        """Forget the accumulated gradient."""

    @property
    def shape(self) -> Tuple[int, ...]:
        return self.value.shape


class Variable(Operand):
    """
    A leaf operand: a constant (``requires_grad=False``) or a parameter.

    Examples:
        >>> x = Variable([1.0, 2.0])
        >>> x.shape
        (2, 1)
        >>> x.acc_grad([0.5, 0.5])
        >>> x.acc_grad([0.5, 0.5])
        >>> x.grad.ravel().tolist()
        [1.0, 1.0]
    """

    def __init__(
        self,
        data: ArrayLike,
        requires_grad: bool = True,
        dtype: Optional[Any] = None,
    ):
        """
        Args:
            data (ArrayLike): The value. Normalized with :func:`as_matrix`.
            requires_grad (bool, optional): Whether this operand requires gradients. Fixed for the
                lifetime of the variable. Defaults to True.
            dtype (Any, optional): Element type (float32 or float64). Defaults to None.
        """
        self._value = as_matrix(data, dtype=dtype, op_name=type(self).__name__)
        self._requires_grad = bool(requires_grad)
        self._grad: Optional[np.ndarray] = None  # Lazily initialized
        self._lock = threading.Lock()

    @property
    def value(self) -> np.ndarray:
        return self._value

    @property
    def requires_grad(self) -> bool:
        return self._requires_grad

    @property
    def grad(self) -> Optional[np.ndarray]:
        return self._grad

    def acc_grad(self, grad: ArrayLike) -> None:
        """
        Accumulate ``grad`` into this variable.

        The first call stores a copy, the following ones add in place. A lock serializes
        concurrent calls coming from the parallel branches of a backward pass.

        Args:
            grad (ArrayLike): Gradient with the same shape as the value.

        Raises:
            ShapeMismatchError: If the gradient shape differs from the value shape.
        """
        grad = as_matrix(grad, op_name=type(self).__name__)
        check_same_shape(type(self).__name__, self._value, grad, what="value and gradient")
        with self._lock:
            if self._grad is None:
                self._grad = np.array(grad, dtype=self._value.dtype, copy=True)
            else:
                self._grad += grad

    def zero_grad(self) -> None:
        with self._lock:
            self._grad = None

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(value={self._value.tolist()}, "
            f"requires_grad={self._requires_grad})"
        )


def scalar(
    value: float, requires_grad: bool = False, dtype: Optional[Any] = None
) -> Variable:
    """
    Build a 1x1 variable, e.g. the alpha of an ELU or the divisor of a DivScalar.

    Args:
        value (float): The scalar value.
        requires_grad (bool, optional): Defaults to False.
        dtype (Any, optional): Defaults to None (float64).

    Returns:
        Variable: The scalar operand.
    """
    return Variable(value, requires_grad=requires_grad, dtype=dtype)


class FunctionState(enum.Enum):
    CREATED = "created"
    FORWARDED = "forwarded"
    BACKWARDED = "backwarded"


class Function:
    """
    Base class for differentiable operations.

    A function holds references to its operands plus any configuration of its own.
    Subclasses implement ``_forward`` and ``_backward``:

    - ``_forward()`` reads the operand values and returns a new output array. Anything the
      backward pass needs (a softmax output, a dropout mask, arg-max positions) is cached on
      the instance and its attribute name listed in ``_cache``.
    - ``_backward(gy)`` validates the upstream gradient, computes the vector-Jacobian products
      and calls ``acc_grad`` on each operand that requires a gradient.

    The public ``forward``/``backward`` enforce the life cycle
    ``CREATED -> FORWARDED -> BACKWARDED``: backward before forward, a second backward, or a
    forward after backward raise :class:`MissingCachedStateError`. A backward that fails
    validation leaves the function in ``FORWARDED`` without having touched any gradient.
    """

    # names of the attributes populated by _forward and consumed by _backward
    _cache: Tuple[str, ...] = ()

    def __init__(self, *operands: Operand):
        """
        Initialize a `Function` with its operands.

        Args:
            *operands (Operand): The operands of this operation.
        """
        self._operands = list(operands)
        self.state = FunctionState.CREATED

    @property
    def name(self) -> str:
        return type(self).__name__

    def operands(self) -> List[Operand]:
        """
        Return the operands of this function, in a fixed order.

        Returns:
            List[Operand]: The operands.
        """
        return list(self._operands)

    def forward(self) -> np.ndarray:
        """
        Compute the output of this function from the current operand values.

        Returns:
            np.ndarray: The output value.

        Raises:
            MissingCachedStateError: If the function was already backwarded.
        """
        if self.state is FunctionState.BACKWARDED:
            raise MissingCachedStateError(
                f"{self.name}: forward called after backward, the function cannot be reused"
            )
        out = self._forward()
        self.state = FunctionState.FORWARDED
        logger.debug(f"{self.name} forward -> {out.shape}")
        return out

    def backward(self, gy: ArrayLike) -> None:
        """
        Propagate the upstream gradient ``gy`` to the operands.

        Args:
            gy (ArrayLike): Gradient of the loss with respect to the output of this function.

        Raises:
            MissingCachedStateError: If forward was not called, or backward was already called.
            ShapeMismatchError: If ``gy`` is not compatible with the output.
        """
        if self.state is FunctionState.CREATED:
            raise MissingCachedStateError(f"{self.name}: backward called before forward")
        if self.state is FunctionState.BACKWARDED:
            raise MissingCachedStateError(
                f"{self.name}: backward called twice, the cached state was already consumed"
            )
        gy = as_matrix(gy, op_name=self.name)
        logger.debug(f"{self.name} backward <- {gy.shape}")
        self._backward(gy)
        self.state = FunctionState.BACKWARDED
        for attr in self._cache:
            setattr(self, attr, None)

    def _forward(self) -> np.ndarray:
        raise NotImplementedError("Forward pass not implemented for this function")

    def _backward(self, gy: np.ndarray) -> None:
        raise NotImplementedError("Backward pass not implemented for this function")

    @classmethod
    def apply(cls, *args: Any, **kwargs: Any) -> "Operator":
        """
        Construct this function and evaluate it into a new graph node.

        Args:
            *args (Any): Operands and configuration, as accepted by the constructor.
            **kwargs (Any): Keyword configuration, as accepted by the constructor.

        Returns:
            Operator: The node holding the output value.
        """
        return Operator(cls(*args, **kwargs))

    def __repr__(self) -> str:
        return f"{self.name}(state={self.state.value}, operands={len(self._operands)})"


class Operator(Variable):
    """
    A graph node: an operand whose value is the output of a function.

    The function is evaluated once, when the node is created. The node requires gradients
    if any operand of its function does.
    """

    def __init__(self, creator: Function):
        """
        Args:
            creator (Function): The function producing this node's value.
        """
        value = creator.forward()
        requires_grad = any(op.requires_grad for op in creator.operands())
        super().__init__(value, requires_grad=requires_grad)
        self.creator: Optional[Function] = creator

    def __repr__(self) -> str:
        return f"Operator(creator={self.creator!r}, shape={self.shape})"


def backward(node: Operand, grad: Optional[ArrayLike] = None) -> None:
    """
    Compute gradients for all upstream nodes in the graph via backpropagation.

    1. If ``grad`` is None, the gradient is ones (d(node)/d(node) = 1).
    2. A post-order traversal collects every node leading to ``node`` that requires gradients,
       giving a topological order.
    3. The order is walked in reverse and each node's function is backwarded once, with the
       gradient accumulated on that node by its consumers.

    Leaves accumulate their gradients as a side effect. Creators are released afterwards, so the
    same graph cannot be backwarded twice.

    Args:
        node (Operand): The output node.
        grad (ArrayLike, optional): Gradient with respect to ``node``. Defaults to ones.
    """
    if not node.requires_grad:
        return

    if grad is None:
        grad = np.ones_like(node.value)
    node.acc_grad(grad)

    topological_order: List[Operand] = []
    visited = set()
    stack = [(node, False)]  # node, has_visited_children flag

    while stack:
        current, has_visited_children = stack.pop()
        if id(current) in visited:
            continue
        if not has_visited_children:
            # first time we see this node, push it again, then its operands
            stack.append((current, True))
            creator = getattr(current, "creator", None)
            if creator is not None:
                for operand in creator.operands():
                    if operand.requires_grad and id(operand) not in visited:
                        stack.append((operand, False))
        else:
            visited.add(id(current))
            topological_order.append(current)

    for current in reversed(topological_order):
        creator = getattr(current, "creator", None)
        if creator is None:
            continue
        if current.grad is not None:
            creator.backward(current.grad)
        current.creator = None
