# Copyright (C) 2025 Brantleigh Bunting
# SPDX-License-Identifier: BUSL-1.1
#
# Use of this software is governed by the Business Source License
# included in the LICENSE file and at <https://mariadb.com/bsl11>

"""
Tensor product representation layer.

    aS = sigmoid(WinS x + bS + WrecS yPrev)      attention on the symbols
    aR = sigmoid(WinR x + bR + WrecR yPrev)      attention on the roles
    s = S aS
    r = R aR
    B = s r'
    y = vec(B)                                   row-major

The backward also minimizes `q * (Q(aS) + Q(aR))`, a quantization
regularizer that pushes the attention towards one-hot vectors:

    Q(a) = sum(a^2 (1 - a)^2) + (sum(a^2) - 1)^2
"""

import numpy as np

from ...activations import SIGMOID
from ...arrays import AugmentedArray, dot, outer
from ...layer_types import ConnectionType
from ...parameters import LayerParameters, ParamsArray, ParamsErrorsList
from .base import RecurrentLayer, gate_deriv


def quantization_grad(a: np.ndarray) -> np.ndarray:
    """dQ/da of the quantization regularizer."""
    return 2.0 * a * (1.0 - a) * (1.0 - 2.0 * a) + 4.0 * a * ((a * a).sum() - 1.0)


class TPRLayerParameters(LayerParameters):
    def __init__(
        self,
        input_size: int,
        n_symbols: int,
        d_symbols: int,
        n_roles: int,
        d_roles: int,
    ) -> None:
        super().__init__([input_size], d_symbols * d_roles)
        self.n_symbols = n_symbols
        self.d_symbols = d_symbols
        self.n_roles = n_roles
        self.d_roles = d_roles
        out = self.output_size

        self.w_in_s = ParamsArray.zeros((n_symbols, input_size), name="w_in_s")
        self.w_in_r = ParamsArray.zeros((n_roles, input_size), name="w_in_r")
        self.w_rec_s = ParamsArray.zeros((n_symbols, out), name="w_rec_s")
        self.w_rec_r = ParamsArray.zeros((n_roles, out), name="w_rec_r")
        self.b_s = ParamsArray.zeros((n_symbols,), name="b_s")
        self.b_r = ParamsArray.zeros((n_roles,), name="b_r")
        self.symbols = ParamsArray.zeros((d_symbols, n_symbols), name="symbols")
        self.roles = ParamsArray.zeros((d_roles, n_roles), name="roles")

        self.weights_list.extend(
            [self.w_in_s, self.w_in_r, self.w_rec_s, self.w_rec_r, self.symbols, self.roles]
        )
        self.biases_list.extend([self.b_s, self.b_r])


class TPRLayer(RecurrentLayer):
    """
    Args:
        q: Weight of the quantization regularizer.
    """

    connection_type = ConnectionType.TPR

    def __init__(self, input_array, output_array, params, layers_window, dropout=0.0, rng=None, q=0.00001):
        super().__init__(input_array, output_array, params, layers_window, None, dropout, rng)
        self.q = q
        self.a_s = AugmentedArray.zeros(params.n_symbols, SIGMOID)
        self.a_r = AugmentedArray.zeros(params.n_roles, SIGMOID)
        self.s = AugmentedArray.zeros(params.d_symbols)
        self.r = AugmentedArray.zeros(params.d_roles)

    @property
    def binding_matrix(self) -> np.ndarray:
        return self.output_array.values.reshape(self.params.d_symbols, self.params.d_roles)

    def _forward(self) -> None:
        x = self.input_array.values
        p = self.params
        y_prev = self.prev_output()

        a_s = dot(x, p.w_in_s.values) + p.b_s.values
        a_r = dot(x, p.w_in_r.values) + p.b_r.values
        if y_prev is not None:
            a_s += p.w_rec_s.values @ y_prev
            a_r += p.w_rec_r.values @ y_prev
        self.a_s.assign_values(a_s)
        self.a_r.assign_values(a_r)
        self.a_s.activate()
        self.a_r.activate()

        self.s.assign_values(p.symbols.values @ self.a_s.values)
        self.r.assign_values(p.roles.values @ self.a_r.values)
        self.output_array.assign_values(np.outer(self.s.values, self.r.values).ravel())

    def _backward(self, propagate_to_input: bool) -> ParamsErrorsList:
        self._add_recurrent_errors()

        x = self.input_array.values
        p = self.params
        y_prev = self.prev_output()

        g_binding = self.output_array.errors.reshape(p.d_symbols, p.d_roles)
        g_s = g_binding @ self.r.values
        g_r = g_binding.T @ self.s.values
        self.s.assign_errors(g_s)
        self.r.assign_errors(g_r)

        a_s = self.a_s.values
        a_r = self.a_r.values
        g_as = (p.symbols.values.T @ g_s + self.q * quantization_grad(a_s)) * gate_deriv(self.a_s)
        g_ar = (p.roles.values.T @ g_r + self.q * quantization_grad(a_r)) * gate_deriv(self.a_r)
        self.a_s.assign_errors(g_as)
        self.a_r.assign_errors(g_ar)

        if propagate_to_input:
            self.input_array.assign_errors(p.w_in_s.values.T @ g_as + p.w_in_r.values.T @ g_ar)

        if y_prev is not None:
            g_rec_s = np.outer(g_as, y_prev)
            g_rec_r = np.outer(g_ar, y_prev)
        else:
            g_rec_s = np.zeros(p.w_rec_s.shape)
            g_rec_r = np.zeros(p.w_rec_r.shape)

        return self._params_errors(
            (p.w_in_s, outer(x, g_as)),
            (p.w_in_r, outer(x, g_ar)),
            (p.w_rec_s, g_rec_s),
            (p.w_rec_r, g_rec_r),
            (p.symbols, np.outer(g_s, a_s)),
            (p.roles, np.outer(g_r, a_r)),
            (p.b_s, g_as),
            (p.b_r, g_ar),
        )

    def _recurrent_errors(self, next_layer: "TPRLayer") -> np.ndarray:
        p = self.params
        return p.w_rec_s.values.T @ next_layer.a_s.errors + p.w_rec_r.values.T @ next_layer.a_r.errors
