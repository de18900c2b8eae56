r"""
Activation formulas and their derivatives.

Every function here is pure and vectorized: it takes an array ``x`` (plus scalar parameters
when the activation has some) and returns an array of the same shape and dtype. Functions named
``*_deriv`` give $\partial f / \partial x$ element by element; functions named
``*_<param>_deriv`` give the element-wise derivative with respect to that parameter, which the
caller sums against the upstream gradient.

Branch conventions (which side of a kink owns the boundary point) are part of the contract:
the negative branch of LeakyReLU/ELU/CELU/SELU includes zero, ReLU's derivative is 1 at zero.
"""

import math

import numpy as np

# Replacement for log(0) and its derivative
LOG_EPSILON = 1.0e-8

_SQRT_2_OVER_PI = math.sqrt(2.0 / math.pi)
_GELU_COEF = 0.044715


def sigmoid(x: np.ndarray) -> np.ndarray:
    # exp(-|x|) never overflows
    z = np.exp(-np.abs(x))
    return np.where(x >= 0, 1.0 / (1.0 + z), z / (1.0 + z))


def sigmoid_deriv(x: np.ndarray) -> np.ndarray:
    s = sigmoid(x)
    return s * (1.0 - s)


def tanh(x: np.ndarray) -> np.ndarray:
    return np.tanh(x)


def tanh_deriv(x: np.ndarray) -> np.ndarray:
    return 1.0 - np.tanh(x) ** 2


def tan(x: np.ndarray) -> np.ndarray:
    return np.tan(x)


def tan_deriv(x: np.ndarray) -> np.ndarray:
    c = np.cos(x)
    return 1.0 / (c * c)


def relu(x: np.ndarray) -> np.ndarray:
    return np.maximum(x, 0.0)


def relu_deriv(x: np.ndarray) -> np.ndarray:
    return (x >= 0.0).astype(x.dtype)


def hard_sigmoid(x: np.ndarray) -> np.ndarray:
    return np.clip(0.2 * x + 0.5, 0.0, 1.0)


def hard_sigmoid_deriv(x: np.ndarray) -> np.ndarray:
    return np.where(np.abs(x) < 2.5, 0.2, 0.0).astype(x.dtype)


def hard_tanh(x: np.ndarray) -> np.ndarray:
    return np.clip(x, -1.0, 1.0)


def hard_tanh_deriv(x: np.ndarray) -> np.ndarray:
    return (np.abs(x) < 1.0).astype(x.dtype)


def softsign(x: np.ndarray) -> np.ndarray:
    return x / (1.0 + np.abs(x))


def softsign_deriv(x: np.ndarray) -> np.ndarray:
    return (1.0 - np.abs(softsign(x))) ** 2


def abs_deriv(x: np.ndarray) -> np.ndarray:
    # 0 at the kink
    return np.sign(x)


def sin_deriv(x: np.ndarray) -> np.ndarray:
    return np.cos(x)


def cos_deriv(x: np.ndarray) -> np.ndarray:
    return -np.sin(x)


def neg(x: np.ndarray) -> np.ndarray:
    return -x


def neg_deriv(x: np.ndarray) -> np.ndarray:
    return np.full_like(x, -1.0)


def reciprocal(x: np.ndarray) -> np.ndarray:
    return 1.0 / x


def reciprocal_deriv(x: np.ndarray) -> np.ndarray:
    return -1.0 / (x * x)


def sqrt_deriv(x: np.ndarray) -> np.ndarray:
    return 0.5 / np.sqrt(x)


def safe_log(x: np.ndarray) -> np.ndarray:
    """Natural logarithm with ``log(0) = log(LOG_EPSILON)``. ``x`` must be non-negative."""
    return np.log(np.where(x == 0.0, LOG_EPSILON, x))


def safe_log_deriv(x: np.ndarray) -> np.ndarray:
    """``1/x`` with ``1/LOG_EPSILON`` at zero. ``x`` must be non-negative."""
    return 1.0 / np.where(x == 0.0, LOG_EPSILON, x)


def softplus(x: np.ndarray, beta: float = 1.0, threshold: float = 20.0) -> np.ndarray:
    r"""
    $$
    softplus(x) = \frac{1}{\beta} \log(1 + e^{\beta x})
    $$
    for $x \le threshold$, and $x$ above it.
    """
    return np.where(x <= threshold, np.logaddexp(0.0, beta * x) / beta, x).astype(x.dtype)


def softplus_deriv(x: np.ndarray, beta: float = 1.0, threshold: float = 20.0) -> np.ndarray:
    return np.where(x <= threshold, sigmoid(beta * x), 1.0).astype(x.dtype)


def softplus_beta_deriv(
    x: np.ndarray, beta: float = 1.0, threshold: float = 20.0
) -> np.ndarray:
    sp = np.logaddexp(0.0, beta * x)
    return np.where(
        x <= threshold, -sp / (beta * beta) + x * sigmoid(beta * x) / beta, 0.0
    ).astype(x.dtype)


def step_param_deriv(x: np.ndarray, *params: float) -> np.ndarray:
    """Derivative with respect to the location of a step: zero almost everywhere."""
    return np.zeros_like(x)


def leaky_relu(x: np.ndarray, alpha: float = 0.01) -> np.ndarray:
    return np.where(x <= 0.0, alpha * x, x).astype(x.dtype)


def leaky_relu_deriv(x: np.ndarray, alpha: float = 0.01) -> np.ndarray:
    return np.where(x <= 0.0, alpha, 1.0).astype(x.dtype)


def leaky_relu_alpha_deriv(x: np.ndarray, alpha: float = 0.01) -> np.ndarray:
    return np.where(x <= 0.0, x, 0.0).astype(x.dtype)


def elu(x: np.ndarray, alpha: float = 1.0) -> np.ndarray:
    return np.where(x <= 0.0, alpha * np.expm1(np.minimum(x, 0.0)), x).astype(x.dtype)


def elu_deriv(x: np.ndarray, alpha: float = 1.0) -> np.ndarray:
    return np.where(x <= 0.0, alpha * np.exp(np.minimum(x, 0.0)), 1.0).astype(x.dtype)


def elu_alpha_deriv(x: np.ndarray, alpha: float = 1.0) -> np.ndarray:
    return np.where(x <= 0.0, np.expm1(np.minimum(x, 0.0)), 0.0).astype(x.dtype)


def celu(x: np.ndarray, alpha: float = 1.0) -> np.ndarray:
    return np.where(
        x <= 0.0, alpha * np.expm1(np.minimum(x, 0.0) / alpha), x
    ).astype(x.dtype)


def celu_deriv(x: np.ndarray, alpha: float = 1.0) -> np.ndarray:
    return np.where(x <= 0.0, np.exp(np.minimum(x, 0.0) / alpha), 1.0).astype(x.dtype)


def celu_alpha_deriv(x: np.ndarray, alpha: float = 1.0) -> np.ndarray:
    z = np.minimum(x, 0.0) / alpha
    return np.where(x <= 0.0, np.expm1(z) - z * np.exp(z), 0.0).astype(x.dtype)


def selu(x: np.ndarray, alpha: float, scale: float) -> np.ndarray:
    return (scale * elu(x, alpha)).astype(x.dtype)


def selu_deriv(x: np.ndarray, alpha: float, scale: float) -> np.ndarray:
    return (scale * elu_deriv(x, alpha)).astype(x.dtype)


def selu_alpha_deriv(x: np.ndarray, alpha: float, scale: float) -> np.ndarray:
    return (scale * elu_alpha_deriv(x, alpha)).astype(x.dtype)


def selu_scale_deriv(x: np.ndarray, alpha: float, scale: float) -> np.ndarray:
    return elu(x, alpha)


def soft_shrink(x: np.ndarray, lambd: float = 0.5) -> np.ndarray:
    return np.where(x < -lambd, x + lambd, np.where(x > lambd, x - lambd, 0.0)).astype(
        x.dtype
    )


def soft_shrink_deriv(x: np.ndarray, lambd: float = 0.5) -> np.ndarray:
    return (np.abs(x) > lambd).astype(x.dtype)


def soft_shrink_lambda_deriv(x: np.ndarray, lambd: float = 0.5) -> np.ndarray:
    return np.where(x < -lambd, 1.0, np.where(x > lambd, -1.0, 0.0)).astype(x.dtype)


def threshold(x: np.ndarray, threshold: float, value: float) -> np.ndarray:
    return np.where(x <= threshold, value, x).astype(x.dtype)


def threshold_deriv(x: np.ndarray, threshold: float, value: float) -> np.ndarray:
    return (x > threshold).astype(x.dtype)


def threshold_value_deriv(x: np.ndarray, threshold: float, value: float) -> np.ndarray:
    return (x <= threshold).astype(x.dtype)


def swish(x: np.ndarray) -> np.ndarray:
    return x * sigmoid(x)


def swish_deriv(x: np.ndarray) -> np.ndarray:
    s = sigmoid(x)
    return s * (1.0 + x * (1.0 - s))


def swish_b(x: np.ndarray, beta: float = 1.0) -> np.ndarray:
    return x * sigmoid(beta * x)


def swish_b_deriv(x: np.ndarray, beta: float = 1.0) -> np.ndarray:
    s = sigmoid(beta * x)
    return s + beta * x * s * (1.0 - s)


def swish_b_beta_deriv(x: np.ndarray, beta: float = 1.0) -> np.ndarray:
    s = sigmoid(beta * x)
    return x * x * s * (1.0 - s)


def mish(x: np.ndarray) -> np.ndarray:
    r"""
    $$
    mish(x) = x \tanh(\log(1 + e^x))
    $$

    Reference: "Mish: A Self Regularized Non-Monotonic Neural Activation Function",
    Diganta Misra, 2019 (https://arxiv.org/abs/1908.08681)
    """
    return x * np.tanh(np.logaddexp(0.0, x))


def mish_deriv(x: np.ndarray) -> np.ndarray:
    t = np.tanh(np.logaddexp(0.0, x))
    return t + x * (1.0 - t * t) * sigmoid(x)


def gelu(x: np.ndarray) -> np.ndarray:
    r"""
    GELU, tanh approximation:
    $$
    0.5 x \left(1 + \tanh\left(\sqrt{2/\pi}\,(x + 0.044715 x^3)\right)\right)
    $$
    """
    return (0.5 * x * (1.0 + np.tanh(_SQRT_2_OVER_PI * (x + _GELU_COEF * x**3)))).astype(x.dtype)


def gelu_deriv(x: np.ndarray) -> np.ndarray:
    r"""
    $$
    \frac{d\,GELU}{dx} = 0.5 (1 + \tanh\alpha) + 0.5\,x\,(1 - \tanh^2\alpha)\,\alpha'
    $$
    with $\alpha = \sqrt{2/\pi}(x + 0.044715x^3)$ and $\alpha' = \sqrt{2/\pi}(1 + 3 \cdot 0.044715x^2)$.
    """
    alpha = _SQRT_2_OVER_PI * (x + _GELU_COEF * x**3)
    tanh_alpha = np.tanh(alpha)
    alpha_prime = _SQRT_2_OVER_PI * (1.0 + 3.0 * _GELU_COEF * x**2)
    return (0.5 * (1.0 + tanh_alpha) + 0.5 * x * (1.0 - tanh_alpha**2) * alpha_prime).astype(
        x.dtype
    )
