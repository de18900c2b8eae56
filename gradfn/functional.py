import logging
from typing import Callable, List, Tuple, Union

import numpy as np

from gradfn import mathfuncs
from gradfn.errors import DomainError
from gradfn.tensor import (
    Function,
    Operand,
    Operator,
    check_same_shape,
    check_scalar,
    scalar,
)

logger = logging.getLogger(__name__)


class UnaryElementwise(Function):
    r"""
    Base class of the element-wise activation family.

    A subclass provides the element-wise function ``f`` and its derivative ``df`` (both taken
    from :mod:`gradfn.mathfuncs`), and, when the activation has scalar parameters, one
    parameter-derivative per parameter in ``param_dfs``.

    Forward computes $y = f(x, p_1, \ldots, p_k)$. Backward computes

    $$
    \frac{\partial L}{\partial x} = f'(x) \odot g_y
    \qquad
    \frac{\partial L}{\partial p_i} = \sum \frac{\partial f}{\partial p_i}(x) \odot g_y
    $$

    where the parameter gradients are only computed for parameters that require them.
    """

    f: Callable[..., np.ndarray]
    df: Callable[..., np.ndarray]
    param_dfs: Tuple[Callable[..., np.ndarray], ...] = ()

    def __init__(self, x: Operand, *params: Operand):
        super().__init__(x, *params)
        self.x = x
        self.params = params

    def _param_values(self) -> List[float]:
        values = []
        for param in self.params:
            check_scalar(self.name, param.value, what="parameter")
            values.append(param.value.item())
        return values

    def _forward(self) -> np.ndarray:
        return self.f(self.x.value, *self._param_values())

    def _backward(self, gy: np.ndarray) -> None:
        x = self.x.value
        check_same_shape(self.name, x, gy, what="input and gradient")
        params = self._param_values()

        gx = self.df(x, *params) * gy if self.x.requires_grad else None
        gparams = [
            np.sum(dparam(x, *params) * gy) if param.requires_grad else None
            for param, dparam in zip(self.params, self.param_dfs)
        ]

        if gx is not None:
            self.x.acc_grad(gx)
        for param, gp in zip(self.params, gparams):
            if gp is not None:
                param.acc_grad(gp)


class Sigmoid(UnaryElementwise):
    r"""
    $$
    sigmoid(x) = \frac{1}{1 + e^{-x}}
    $$
    """

    f = staticmethod(mathfuncs.sigmoid)
    df = staticmethod(mathfuncs.sigmoid_deriv)


class Tanh(UnaryElementwise):
    r"""
    $$
    tanh(x) = \frac{e^x - e^{-x}}{e^x + e^{-x}}, \qquad \frac{d}{dx}tanh(x) = 1 - tanh^2(x)
    $$
    """

    f = staticmethod(mathfuncs.tanh)
    df = staticmethod(mathfuncs.tanh_deriv)


class Tan(UnaryElementwise):
    f = staticmethod(mathfuncs.tan)
    df = staticmethod(mathfuncs.tan_deriv)


class Relu(UnaryElementwise):
    """
    Rectified Linear Unit, ``max(0, x)``. The derivative is taken as 1 at zero.
    """

    f = staticmethod(mathfuncs.relu)
    df = staticmethod(mathfuncs.relu_deriv)


class LeakyRelu(UnaryElementwise):
    """``alpha * x`` for ``x <= 0``, ``x`` otherwise. Operands: ``(x, alpha)``."""

    f = staticmethod(mathfuncs.leaky_relu)
    df = staticmethod(mathfuncs.leaky_relu_deriv)
    param_dfs = (mathfuncs.leaky_relu_alpha_deriv,)


class Elu(UnaryElementwise):
    r"""
    Exponential Linear Unit. Operands: ``(x, alpha)``.
    $$
    ELU(x) = \begin{cases} \alpha (e^x - 1) & x \le 0 \\ x & x > 0 \end{cases}
    $$
    """

    f = staticmethod(mathfuncs.elu)
    df = staticmethod(mathfuncs.elu_deriv)
    param_dfs = (mathfuncs.elu_alpha_deriv,)


class Celu(UnaryElementwise):
    r"""
    Continuously differentiable ELU. Operands: ``(x, alpha)``.
    $$
    CELU(x) = \begin{cases} \alpha (e^{x/\alpha} - 1) & x \le 0 \\ x & x > 0 \end{cases}
    $$
    """

    f = staticmethod(mathfuncs.celu)
    df = staticmethod(mathfuncs.celu_deriv)
    param_dfs = (mathfuncs.celu_alpha_deriv,)


class Selu(UnaryElementwise):
    """Scaled ELU, ``scale * ELU(x, alpha)``. Operands: ``(x, alpha, scale)``."""

    f = staticmethod(mathfuncs.selu)
    df = staticmethod(mathfuncs.selu_deriv)
    param_dfs = (
        mathfuncs.selu_alpha_deriv,
        mathfuncs.selu_scale_deriv,
    )


class Softplus(UnaryElementwise):
    """
    ``(1/beta) * log(1 + exp(beta * x))``, linear above ``threshold``.
    Operands: ``(x, beta, threshold)``.
    """

    f = staticmethod(mathfuncs.softplus)
    df = staticmethod(mathfuncs.softplus_deriv)
    param_dfs = (
        mathfuncs.softplus_beta_deriv,
        mathfuncs.step_param_deriv,
    )


class SoftShrink(UnaryElementwise):
    """Shrinks towards zero by ``lambda``, zero on ``[-lambda, lambda]``. Operands: ``(x, lambda)``."""

    f = staticmethod(mathfuncs.soft_shrink)
    df = staticmethod(mathfuncs.soft_shrink_deriv)
    param_dfs = (mathfuncs.soft_shrink_lambda_deriv,)


class Threshold(UnaryElementwise):
    """``value`` where ``x <= threshold``, ``x`` elsewhere. Operands: ``(x, threshold, value)``."""

    f = staticmethod(mathfuncs.threshold)
    df = staticmethod(mathfuncs.threshold_deriv)
    param_dfs = (
        mathfuncs.step_param_deriv,
        mathfuncs.threshold_value_deriv,
    )


class HardSigmoid(UnaryElementwise):
    """Piecewise linear sigmoid, ``clip(0.2 * x + 0.5, 0, 1)``."""

    f = staticmethod(mathfuncs.hard_sigmoid)
    df = staticmethod(mathfuncs.hard_sigmoid_deriv)


class HardTanh(UnaryElementwise):
    f = staticmethod(mathfuncs.hard_tanh)
    df = staticmethod(mathfuncs.hard_tanh_deriv)


class Softsign(UnaryElementwise):
    f = staticmethod(mathfuncs.softsign)
    df = staticmethod(mathfuncs.softsign_deriv)


class Mish(UnaryElementwise):
    """``x * tanh(softplus(x))``. Paper: https://arxiv.org/abs/1908.08681"""

    f = staticmethod(mathfuncs.mish)
    df = staticmethod(mathfuncs.mish_deriv)


class Gelu(UnaryElementwise):
    r"""
    Gaussian Error Linear Unit (GELU) activation function.
    GELU(x) = x * P(X <= x) where P(X) ~ Gaussian Distribution with mean 0 and standard deviation 1

    This activation function approximates:
    $$
    0.5 * x * \left(1 + tanh\left(\sqrt{\frac{2}{\pi}} \left(x + 0.044715*x^3\right)\right)\right)
    $$

    Paper: https://arxiv.org/abs/1606.08415
    """

    f = staticmethod(mathfuncs.gelu)
    df = staticmethod(mathfuncs.gelu_deriv)


class Swish(UnaryElementwise):
    """``x * sigmoid(x)``, also known as SiLU."""

    f = staticmethod(mathfuncs.swish)
    df = staticmethod(mathfuncs.swish_deriv)


class SwishB(UnaryElementwise):
    """``x * sigmoid(beta * x)`` with a (possibly trainable) ``beta``. Operands: ``(x, beta)``."""

    f = staticmethod(mathfuncs.swish_b)
    df = staticmethod(mathfuncs.swish_b_deriv)
    param_dfs = (mathfuncs.swish_b_beta_deriv,)


class Abs(UnaryElementwise):
    f = staticmethod(np.abs)
    df = staticmethod(mathfuncs.abs_deriv)


class Sin(UnaryElementwise):
    f = staticmethod(np.sin)
    df = staticmethod(mathfuncs.sin_deriv)


class Cos(UnaryElementwise):
    f = staticmethod(np.cos)
    df = staticmethod(mathfuncs.cos_deriv)


class Neg(UnaryElementwise):
    f = staticmethod(mathfuncs.neg)
    df = staticmethod(mathfuncs.neg_deriv)


class Reciprocal(UnaryElementwise):
    f = staticmethod(mathfuncs.reciprocal)
    df = staticmethod(mathfuncs.reciprocal_deriv)


class Exp(UnaryElementwise):
    f = staticmethod(np.exp)
    df = staticmethod(np.exp)


class Sqrt(UnaryElementwise):
    f = staticmethod(np.sqrt)
    df = staticmethod(mathfuncs.sqrt_deriv)


class Log(UnaryElementwise):
    """
    Natural logarithm.

    Zero is mapped to ``log(1e-8)`` with derivative ``1e8`` instead of infinities. The logarithm
    of a negative number raises :class:`DomainError`.
    """

    f = staticmethod(mathfuncs.safe_log)
    df = staticmethod(mathfuncs.safe_log_deriv)

    def _check_domain(self) -> None:
        if np.any(self.x.value < 0):
            raise DomainError(f"{self.name}: invalid log for negative values")

    def _forward(self) -> np.ndarray:
        self._check_domain()
        return super()._forward()

    def _backward(self, gy: np.ndarray) -> None:
        self._check_domain()
        super()._backward(gy)


########### Graph builders ###############
ScalarLike = Union[Operand, float, int]


def _as_param(p: ScalarLike) -> Operand:
    if not isinstance(p, Operand):
        p = scalar(p, requires_grad=False)
    return p


def sigmoid(x: Operand) -> Operator:
    """
    Applies the sigmoid activation function.

    Args:
        x (Operand): The input operand.

    Returns:
        Operator: The node after applying the sigmoid function.
    """
    return Sigmoid.apply(x)


def tanh(x: Operand) -> Operator:
    """
    Applies the hyperbolic tangent (tanh) activation function.

    Args:
        x (Operand): The input operand.

    Returns:
        Operator: The node after applying the tanh function.
    """
    return Tanh.apply(x)


def tan(x: Operand) -> Operator:
    """
    Applies the tangent function element-wise.

    Args:
        x (Operand): The input operand, in radians.

    Returns:
        Operator: The node after applying tan.
    """
    return Tan.apply(x)


def relu(x: Operand) -> Operator:
    """
    Applies the Rectified Linear Unit (ReLU) activation function.

    Args:
        x (Operand): The input operand.

    Returns:
        Operator: The node after applying the ReLU function.
    """
    return Relu.apply(x)


def leaky_relu(x: Operand, alpha: ScalarLike = 0.01) -> Operator:
    """
    Applies LeakyReLU. ``alpha`` may be a float or a 1x1 operand (trainable if it requires grad).

    Args:
        x (Operand): The input operand.
        alpha (ScalarLike, optional): Slope of the negative branch. Defaults to 0.01.

    Returns:
        Operator: The node after applying LeakyReLU.
    """
    return LeakyRelu.apply(x, _as_param(alpha))


def elu(x: Operand, alpha: ScalarLike = 1.0) -> Operator:
    """
    Applies the Exponential Linear Unit (ELU) activation function.

    Args:
        x (Operand): The input operand.
        alpha (ScalarLike, optional): Saturation value of the negative branch. Defaults to 1.0.

    Returns:
        Operator: The node after applying ELU.
    """
    return Elu.apply(x, _as_param(alpha))


def celu(x: Operand, alpha: ScalarLike = 1.0) -> Operator:
    """
    Applies the continuously differentiable ELU (CELU).

    Args:
        x (Operand): The input operand.
        alpha (ScalarLike, optional): Scale of the negative branch. Must be non-zero.
            Defaults to 1.0.

    Returns:
        Operator: The node after applying CELU.
    """
    return Celu.apply(x, _as_param(alpha))


def selu(
    x: Operand,
    alpha: ScalarLike = 1.6732632423543772,
    scale: ScalarLike = 1.0507009873554805,
) -> Operator:
    """
    Applies SELU. The defaults are the self-normalizing constants of
    https://arxiv.org/abs/1706.02515

    Args:
        x (Operand): The input operand.
        alpha (ScalarLike, optional): Saturation value of the negative branch.
        scale (ScalarLike, optional): Output scale.

    Returns:
        Operator: The node after applying SELU.
    """
    return Selu.apply(x, _as_param(alpha), _as_param(scale))


def softplus(x: Operand, beta: ScalarLike = 1.0, threshold: ScalarLike = 20.0) -> Operator:
    """
    Applies Softplus, $\\frac{1}{\\beta}\\log(1 + e^{\\beta x})$, reverting to the identity
    above ``threshold``.

    Args:
        x (Operand): The input operand.
        beta (ScalarLike, optional): Sharpness. Defaults to 1.0.
        threshold (ScalarLike, optional): Inputs above this value pass through. Defaults to 20.0.

    Returns:
        Operator: The node after applying Softplus.
    """
    return Softplus.apply(x, _as_param(beta), _as_param(threshold))


def soft_shrink(x: Operand, lambd: ScalarLike = 0.5) -> Operator:
    """
    Applies soft shrinkage: values within ``[-lambd, lambd]`` become zero and the rest move
    towards zero by ``lambd``.

    Args:
        x (Operand): The input operand.
        lambd (ScalarLike, optional): Shrinkage amount. Defaults to 0.5.

    Returns:
        Operator: The node after applying SoftShrink.
    """
    return SoftShrink.apply(x, _as_param(lambd))


def threshold(x: Operand, threshold: ScalarLike, value: ScalarLike) -> Operator:
    """
    Replaces every element not above ``threshold`` with ``value``.

    Args:
        x (Operand): The input operand.
        threshold (ScalarLike): The cut-off.
        value (ScalarLike): The replacement value.

    Returns:
        Operator: The thresholded node.
    """
    return Threshold.apply(x, _as_param(threshold), _as_param(value))


def hard_sigmoid(x: Operand) -> Operator:
    """
    Applies the piecewise-linear sigmoid $\\max(0, \\min(1, 0.2x + 0.5))$.

    Args:
        x (Operand): The input operand.

    Returns:
        Operator: The node after applying HardSigmoid.
    """
    return HardSigmoid.apply(x)


def hard_tanh(x: Operand) -> Operator:
    """
    Clips the input to ``[-1, 1]``.

    Args:
        x (Operand): The input operand.

    Returns:
        Operator: The node after applying HardTanh.
    """
    return HardTanh.apply(x)


def softsign(x: Operand) -> Operator:
    """
    Applies $\\frac{x}{1 + |x|}$.

    Args:
        x (Operand): The input operand.

    Returns:
        Operator: The node after applying Softsign.
    """
    return Softsign.apply(x)


def mish(x: Operand) -> Operator:
    """
    Applies Mish, $x \\tanh(\\text{softplus}(x))$.

    Args:
        x (Operand): The input operand.

    Returns:
        Operator: The node after applying Mish.
    """
    return Mish.apply(x)


def gelu(x: Operand) -> Operator:
    """
    Applies the Gaussian Error Linear Unit (GELU) activation function.

    This function uses the approximate formula:
    $$
    0.5 * x * (1 + tanh( sqrt(2/pi)*(x + 0.044715*x^3) ))
    $$

    Args:
        x (Operand): The input operand.

    Returns:
        Operator: The node after applying the GELU function.
    """
    return Gelu.apply(x)


def swish(x: Operand) -> Operator:
    """
    Applies Swish, $x \\sigma(x)$.

    Args:
        x (Operand): The input operand.

    Returns:
        Operator: The node after applying Swish.
    """
    return Swish.apply(x)


# SiLU is the same function as Swish
silu = swish


def swish_b(x: Operand, beta: ScalarLike = 1.0) -> Operator:
    """
    Applies Swish with a (possibly trainable) slope, $x \\sigma(\\beta x)$.

    Args:
        x (Operand): The input operand.
        beta (ScalarLike, optional): The slope. Defaults to 1.0.

    Returns:
        Operator: The node after applying Swish.
    """
    return SwishB.apply(x, _as_param(beta))


def abs(x: Operand) -> Operator:  # noqa: A001
    """
    Element-wise absolute value. The derivative at zero is zero.

    Args:
        x (Operand): The input operand.

    Returns:
        Operator: The node holding $|x|$.
    """
    return Abs.apply(x)


def sin(x: Operand) -> Operator:
    """
    Args:
        x (Operand): The input operand, in radians.

    Returns:
        Operator: The node holding $\\sin x$.
    """
    return Sin.apply(x)


def cos(x: Operand) -> Operator:
    """
    Args:
        x (Operand): The input operand, in radians.

    Returns:
        Operator: The node holding $\\cos x$.
    """
    return Cos.apply(x)


def neg(x: Operand) -> Operator:
    """
    Args:
        x (Operand): The input operand.

    Returns:
        Operator: The node holding $-x$.
    """
    return Neg.apply(x)


def reciprocal(x: Operand) -> Operator:
    """
    Element-wise $1/x$.

    Args:
        x (Operand): The input operand.

    Returns:
        Operator: The node holding the reciprocals.
    """
    return Reciprocal.apply(x)


def exp(x: Operand) -> Operator:
    """
    Args:
        x (Operand): The input operand.

    Returns:
        Operator: The node holding $e^x$.
    """
    return Exp.apply(x)


def log(x: Operand) -> Operator:
    """
    Applies the natural logarithm. See :class:`Log` for the handling of zero.

    Args:
        x (Operand): The input operand, non-negative.

    Returns:
        Operator: The node holding $\\log x$.

    Raises:
        DomainError: If ``x`` has negative entries.
    """
    return Log.apply(x)


def sqrt(x: Operand) -> Operator:
    """
    Args:
        x (Operand): The input operand, non-negative.

    Returns:
        Operator: The node holding $\\sqrt{x}$.
    """
    return Sqrt.apply(x)
