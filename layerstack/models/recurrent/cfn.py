# Copyright (C) 2025 Brantleigh Bunting
# SPDX-License-Identifier: BUSL-1.1
#
# Use of this software is governed by the Business Source License
# included in the LICENSE file and at <https://mariadb.com/bsl11>

"""
Chaos-free network.

    i = sigmoid(Wi x + bi + Wir yPrev)
    g = sigmoid(Wf x + bf + Wfr yPrev)
    c = f(Wc x)
    y = i * c + g * f(yPrev)
"""

import numpy as np

from ...activations import SIGMOID, activation_deriv, apply_activation
from ...arrays import AugmentedArray, dot, outer
from ...layer_types import ConnectionType
from ...parameters import LayerParameters, ParamsArray, ParamsErrorsList, RecurrentLinearParams
from .base import RecurrentLayer, gate_deriv, unit_errors


class CFNLayerParameters(LayerParameters):
    def __init__(self, input_size: int, output_size: int) -> None:
        super().__init__([input_size], output_size)
        self.input_gate = RecurrentLinearParams(input_size, output_size, name="input_gate")
        self.forget_gate = RecurrentLinearParams(input_size, output_size, name="forget_gate")
        self.candidate_weights = ParamsArray.zeros((output_size, input_size), name="candidate_weights")
        self._register_linear(self.input_gate)
        self._register_linear(self.forget_gate)
        self.weights_list.append(self.candidate_weights)


class CFNLayer(RecurrentLayer):
    connection_type = ConnectionType.CFN

    def __init__(self, input_array, output_array, params, layers_window, activation=None, dropout=0.0, rng=None):
        super().__init__(input_array, output_array, params, layers_window, activation, dropout, rng)
        size = self.output_array.size
        self.input_gate = AugmentedArray.zeros(size, SIGMOID)
        self.forget_gate = AugmentedArray.zeros(size, SIGMOID)
        self.candidate = AugmentedArray.zeros(size, self.activation_function)
        self.activated_prev_output = None

    def _forward(self) -> None:
        x = self.input_array.values
        p = self.params
        y_prev = self.prev_output()

        for unit, gate in ((p.input_gate, self.input_gate), (p.forget_gate, self.forget_gate)):
            pre = dot(x, unit.w.values) + unit.b.values
            if y_prev is not None:
                pre += unit.wr.values @ y_prev
            gate.assign_values(pre)
            gate.activate()

        self.candidate.assign_values(dot(x, p.candidate_weights.values))
        self.candidate.activate()

        y = self.input_gate.values * self.candidate.values
        if y_prev is not None:
            self.activated_prev_output = apply_activation(self.activation_function, y_prev)
            y += self.forget_gate.values * self.activated_prev_output
        else:
            self.activated_prev_output = None
        self.output_array.assign_values(y)

    def _backward(self, propagate_to_input: bool) -> ParamsErrorsList:
        self._add_recurrent_errors()

        x = self.input_array.values
        p = self.params
        y_prev = self.prev_output()
        gy = self.output_array.errors

        g_in = gy * self.candidate.values * gate_deriv(self.input_gate)
        g_cand = gy * self.input_gate.values * gate_deriv(self.candidate)
        if y_prev is not None:
            g_forget = gy * self.activated_prev_output * gate_deriv(self.forget_gate)
        else:
            g_forget = np.zeros_like(gy)

        self.input_gate.assign_errors(g_in)
        self.forget_gate.assign_errors(g_forget)
        self.candidate.assign_errors(g_cand)

        if propagate_to_input:
            self.input_array.assign_errors(
                p.input_gate.w.values.T @ g_in
                + p.forget_gate.w.values.T @ g_forget
                + p.candidate_weights.values.T @ g_cand
            )

        return self._params_errors(
            *unit_errors(p.input_gate, g_in, x, y_prev),
            *unit_errors(p.forget_gate, g_forget, x, y_prev),
            (p.candidate_weights, outer(x, g_cand)),
        )

    def _recurrent_errors(self, next_layer: "CFNLayer") -> np.ndarray:
        p = self.params
        y = self.output_array.values
        return (
            p.input_gate.wr.values.T @ next_layer.input_gate.errors
            + p.forget_gate.wr.values.T @ next_layer.forget_gate.errors
            + next_layer.output_array.errors
            * next_layer.forget_gate.values
            * activation_deriv(self.activation_function, y)
        )
