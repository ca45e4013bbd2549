# Copyright (C) 2025 Brantleigh Bunting
# SPDX-License-Identifier: BUSL-1.1
#
# Use of this software is governed by the Business Source License
# included in the LICENSE file and at <https://mariadb.com/bsl11>

"""
Delta-RNN.

    wx = W x
    wy = Wr yPrev
    c = f(alpha * wx * wy + beta1 * wy + beta2 * wx + bc)
    p = sigmoid(wx + bp)
    y = p * c + (1 - p) * yPrev

`bc` and `bp` are the biases of the feed-forward and recurrent units.
"""

import numpy as np

from ...activations import SIGMOID
from ...arrays import AugmentedArray, dot, outer
from ...layer_types import ConnectionType
from ...parameters import LayerParameters, LinearParams, ParamsArray, ParamsErrorsList
from .base import RecurrentLayer, gate_deriv


class DeltaRNNLayerParameters(LayerParameters):
    def __init__(self, input_size: int, output_size: int) -> None:
        super().__init__([input_size], output_size)
        self.feedforward_unit = LinearParams(input_size, output_size, name="feedforward_unit")
        self.recurrent_unit = LinearParams(output_size, output_size, name="recurrent_unit")
        self.alpha = ParamsArray.zeros((output_size,), name="alpha")
        self.beta1 = ParamsArray.zeros((output_size,), name="beta1")
        self.beta2 = ParamsArray.zeros((output_size,), name="beta2")
        self.weights_list.extend(
            [self.feedforward_unit.w, self.recurrent_unit.w, self.alpha, self.beta1, self.beta2]
        )
        self.biases_list.extend([self.feedforward_unit.b, self.recurrent_unit.b])


class DeltaRNNLayer(RecurrentLayer):
    connection_type = ConnectionType.DELTA_RNN

    def __init__(self, input_array, output_array, params, layers_window, activation=None, dropout=0.0, rng=None):
        super().__init__(input_array, output_array, params, layers_window, activation, dropout, rng)
        size = self.output_array.size
        self.wx = AugmentedArray.zeros(size)
        self.wy = AugmentedArray.zeros(size)
        self.candidate = AugmentedArray.zeros(size, self.activation_function)
        self.partition = AugmentedArray.zeros(size, SIGMOID)

    def _forward(self) -> None:
        p = self.params
        y_prev = self.prev_output()

        wx = dot(self.input_array.values, p.feedforward_unit.w.values)
        self.wx.assign_values(wx)

        c_in = p.beta2.values * wx + p.feedforward_unit.b.values
        if y_prev is not None:
            wy = p.recurrent_unit.w.values @ y_prev
            self.wy.assign_values(wy)
            c_in += p.alpha.values * wx * wy + p.beta1.values * wy

        self.candidate.assign_values(c_in)
        self.candidate.activate()
        self.partition.assign_values(wx + p.recurrent_unit.b.values)
        self.partition.activate()

        pv = self.partition.values
        y = pv * self.candidate.values
        if y_prev is not None:
            y += (1.0 - pv) * y_prev
        self.output_array.assign_values(y)

    def _backward(self, propagate_to_input: bool) -> ParamsErrorsList:
        self._add_recurrent_errors()

        x = self.input_array.values
        p = self.params
        y_prev = self.prev_output()
        gy = self.output_array.errors
        pv = self.partition.values
        c = self.candidate.values
        wx = self.wx.values

        gc = gy * pv * gate_deriv(self.candidate)
        self.candidate.assign_errors(gc)

        if y_prev is not None:
            wy = self.wy.values
            gp = gy * (c - y_prev) * gate_deriv(self.partition)
            g_wx = gc * (p.alpha.values * wy + p.beta2.values) + gp
            g_wy = gc * (p.alpha.values * wx + p.beta1.values)
            g_alpha = gc * wx * wy
            g_beta1 = gc * wy
            g_wr = np.outer(g_wy, y_prev)
        else:
            gp = gy * c * gate_deriv(self.partition)
            g_wx = gc * p.beta2.values + gp
            g_wy = np.zeros_like(gy)
            g_alpha = np.zeros_like(gy)
            g_beta1 = np.zeros_like(gy)
            g_wr = np.zeros(p.recurrent_unit.w.shape)

        self.partition.assign_errors(gp)
        self.wx.assign_errors(g_wx)
        self.wy.assign_errors(g_wy)

        if propagate_to_input:
            self.input_array.assign_errors(p.feedforward_unit.w.values.T @ g_wx)

        return self._params_errors(
            (p.feedforward_unit.w, outer(x, g_wx)),
            (p.recurrent_unit.w, g_wr),
            (p.alpha, g_alpha),
            (p.beta1, g_beta1),
            (p.beta2, gc * wx),
            (p.feedforward_unit.b, gc),
            (p.recurrent_unit.b, gp),
        )

    def _recurrent_errors(self, next_layer: "DeltaRNNLayer") -> np.ndarray:
        return (
            self.params.recurrent_unit.w.values.T @ next_layer.wy.errors
            + next_layer.output_array.errors * (1.0 - next_layer.partition.values)
        )
