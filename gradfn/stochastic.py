import logging
from typing import Optional

import numpy as np

from gradfn.config import get_generator
from gradfn.errors import ConfigurationError
from gradfn.tensor import Function, Operand, check_same_shape

logger = logging.getLogger(__name__)


class Dropout(Function):
    r"""
    Inverted dropout.

    During forward each element is kept with probability $1 - p$ and scaled by $\frac{1}{1 - p}$,
    so the expected value of the output equals the input:

    $$
    y = x \odot m, \qquad m_{ij} \sim \frac{\text{Bernoulli}(1 - p)}{1 - p}
    $$

    The mask is drawn once per forward from ``rng`` and reused by backward.
    ``p == 1`` drops everything, ``p == 0`` keeps everything.

    Paper: https://arxiv.org/abs/1207.0580
    """

    _cache = ("mask",)

    def __init__(self, x: Operand, p: float, rng: Optional[np.random.Generator] = None):
        """
        Args:
            x (Operand): The input.
            p (float): Probability of dropping an element, in ``[0, 1]``.
            rng (np.random.Generator, optional): Source of randomness. Defaults to the package
                generator (see :func:`gradfn.config.get_generator`).

        Raises:
            ConfigurationError: If ``p`` is outside ``[0, 1]``.
        """
        if not 0.0 <= p <= 1.0:
            raise ConfigurationError(
                f"{type(self).__name__}: probability must be in [0, 1], got {p}"
            )
        super().__init__(x)
        self.x = x
        self.p = float(p)
        self.rng = rng
        self.mask: Optional[np.ndarray] = None

    def _forward(self) -> np.ndarray:
        x = self.x.value
        if self.p == 1.0:
            self.mask = np.zeros_like(x)
        elif self.p == 0.0:
            self.mask = np.ones_like(x)
        else:
            rng = self.rng if self.rng is not None else get_generator()
            keep = 1.0 - self.p
            self.mask = (rng.binomial(1, keep, size=x.shape) / keep).astype(x.dtype)
        return x * self.mask

    def _backward(self, gy: np.ndarray) -> None:
        check_same_shape(self.name, self.x.value, gy, what="input and gradient")
        if self.x.requires_grad:
            self.x.acc_grad(gy * self.mask)
