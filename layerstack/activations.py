# Copyright (C) 2025 Brantleigh Bunting
# SPDX-License-Identifier: BUSL-1.1
#
# Use of this software is governed by the Business Source License
# included in the LICENSE file and at <https://mariadb.com/bsl11>

"""
Activation functions for the layers.

Every activation is a pair (f, df) where df is evaluated at the
pre-activation values x, not at f(x). Softmax is the only one whose
derivative is a Jacobian matrix rather than an element-wise vector.
"""

from dataclasses import dataclass
from typing import Callable, Dict, Optional, Union

import numpy as np


def identity(x: np.ndarray) -> np.ndarray:
    return x.copy()


def identity_backward(x: np.ndarray) -> np.ndarray:
    return np.ones_like(x)


def tanh(x: np.ndarray) -> np.ndarray:
    return np.tanh(x)


def tanh_backward(x: np.ndarray) -> np.ndarray:
    """Derivative of tanh: 1 - tanh(x)^2."""
    t = np.tanh(x)
    return 1.0 - t * t


def sigmoid(x: np.ndarray) -> np.ndarray:
    """
    Logistic sigmoid, stable for large |x|.

    Args:
        x: Input array of any shape.

    Returns:
        1 / (1 + exp(-x)) element-wise.
    """
    out = np.empty_like(x, dtype=np.float64)
    pos = x >= 0
    out[pos] = 1.0 / (1.0 + np.exp(-x[pos]))
    ex = np.exp(x[~pos])
    out[~pos] = ex / (1.0 + ex)
    return out


def sigmoid_backward(x: np.ndarray) -> np.ndarray:
    s = sigmoid(x)
    return s * (1.0 - s)


def relu(x: np.ndarray) -> np.ndarray:
    """
    Rectified Linear Unit: max(0, x).

    Args:
        x: Input array of any shape.

    Returns:
        Element-wise maximum of 0 and x.
    """
    return np.maximum(0.0, x)


def relu_backward(x: np.ndarray) -> np.ndarray:
    """
    Derivative of ReLU: 1 if x > 0 else 0.

    Args:
        x: Pre-activation values (same as forward input).

    Returns:
        Gradient mask, same shape as x.
    """
    return (x > 0.0).astype(x.dtype)


def gelu(x: np.ndarray) -> np.ndarray:
    """
    Gaussian Error Linear Unit (approximate).

    GELU(x) = x * Phi(x) where Phi is the CDF of standard normal.
    Using the tanh approximation from the original paper:
        GELU(x) ≈ 0.5 * x * (1 + tanh(sqrt(2/pi) * (x + 0.044715 * x^3)))
    """
    c = np.sqrt(2.0 / np.pi)
    return 0.5 * x * (1.0 + np.tanh(c * (x + 0.044715 * x**3)))


def gelu_backward(x: np.ndarray) -> np.ndarray:
    """Derivative of GELU (approximate)."""
    c = np.sqrt(2.0 / np.pi)
    inner = c * (x + 0.044715 * x**3)
    tanh_inner = np.tanh(inner)
    sech2 = 1.0 - tanh_inner**2
    inner_deriv = c * (1.0 + 3.0 * 0.044715 * x**2)
    return 0.5 * (1.0 + tanh_inner) + 0.5 * x * sech2 * inner_deriv


def elu(x: np.ndarray, alpha: float = 1.0) -> np.ndarray:
    return np.where(x > 0.0, x, alpha * (np.exp(np.minimum(x, 0.0)) - 1.0))


def elu_backward(x: np.ndarray, alpha: float = 1.0) -> np.ndarray:
    return np.where(x > 0.0, 1.0, alpha * np.exp(np.minimum(x, 0.0)))


def softplus(x: np.ndarray) -> np.ndarray:
    return np.logaddexp(0.0, x)


def softplus_backward(x: np.ndarray) -> np.ndarray:
    return sigmoid(x)


def softsign(x: np.ndarray) -> np.ndarray:
    return x / (1.0 + np.abs(x))


def softsign_backward(x: np.ndarray) -> np.ndarray:
    d = 1.0 + np.abs(x)
    return 1.0 / (d * d)


def hardsigmoid(x: np.ndarray) -> np.ndarray:
    """Piecewise-linear sigmoid: clip(0.2 * x + 0.5, 0, 1)."""
    return np.clip(0.2 * x + 0.5, 0.0, 1.0)


def hardsigmoid_backward(x: np.ndarray) -> np.ndarray:
    return np.where(np.abs(x) < 2.5, 0.2, 0.0)


def hardtanh(x: np.ndarray) -> np.ndarray:
    return np.clip(x, -1.0, 1.0)


def hardtanh_backward(x: np.ndarray) -> np.ndarray:
    return np.where(np.abs(x) < 1.0, 1.0, 0.0)


def softmax(x: np.ndarray) -> np.ndarray:
    """Numerically stable softmax of a vector."""
    z = x - x.max()
    e = np.exp(z)
    return e / e.sum()


def softmax_backward(x: np.ndarray) -> np.ndarray:
    """
    Jacobian of the softmax at x.

    Returns:
        (n, n) matrix J with J[i, j] = s_i * (delta_ij - s_j).
    """
    s = softmax(x)
    return np.diag(s) - np.outer(s, s)


@dataclass(frozen=True)
class Activation:
    """
    An activation function together with its derivative.

    Attributes:
        name: Registry key.
        f: Forward function.
        df: Derivative, evaluated at the pre-activation values.
        jacobian: True if df returns a matrix (e.g. softmax).
    """

    name: str
    f: Callable[[np.ndarray], np.ndarray]
    df: Callable[[np.ndarray], np.ndarray]
    jacobian: bool = False

    def __call__(self, x: np.ndarray) -> np.ndarray:
        return self.f(x)


IDENTITY = Activation("identity", identity, identity_backward)
TANH = Activation("tanh", tanh, tanh_backward)
SIGMOID = Activation("sigmoid", sigmoid, sigmoid_backward)
RELU = Activation("relu", relu, relu_backward)
GELU = Activation("gelu", gelu, gelu_backward)
ELU = Activation("elu", elu, elu_backward)
SOFTPLUS = Activation("softplus", softplus, softplus_backward)
SOFTSIGN = Activation("softsign", softsign, softsign_backward)
HARDSIGMOID = Activation("hardsigmoid", hardsigmoid, hardsigmoid_backward)
HARDTANH = Activation("hardtanh", hardtanh, hardtanh_backward)
SOFTMAX = Activation("softmax", softmax, softmax_backward, jacobian=True)

# Registry for easy lookup by name
ACTIVATIONS: Dict[str, Activation] = {
    a.name: a
    for a in (
        IDENTITY,
        TANH,
        SIGMOID,
        RELU,
        GELU,
        ELU,
        SOFTPLUS,
        SOFTSIGN,
        HARDSIGMOID,
        HARDTANH,
        SOFTMAX,
    )
}


def get_activation(
    activation: Optional[Union[str, Activation]]
) -> Optional[Activation]:
    """
    Resolve an activation given by name (or already resolved).

    Args:
        activation: A registry name, an Activation, or None.

    Returns:
        The Activation, or None if `activation` is None.

    Raises:
        KeyError: If the activation name is not recognized.
    """
    if activation is None or isinstance(activation, Activation):
        return activation
    if activation not in ACTIVATIONS:
        raise KeyError(
            f"Unknown activation: {activation}. Available: {list(ACTIVATIONS.keys())}"
        )
    return ACTIVATIONS[activation]


def apply_activation(activation: Optional[Activation], x: np.ndarray) -> np.ndarray:
    """f(x), or a copy of x when there is no activation."""
    return x.copy() if activation is None else activation.f(x)


def activation_deriv(activation: Optional[Activation], x: np.ndarray) -> np.ndarray:
    """df(x) for element-wise activations; ones when there is no activation."""
    if activation is None:
        return np.ones_like(x)
    if activation.jacobian:
        raise ValueError(f"{activation.name} has a Jacobian derivative.")
    return activation.df(x)
