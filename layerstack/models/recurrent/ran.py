# Copyright (C) 2025 Brantleigh Bunting
# SPDX-License-Identifier: BUSL-1.1
#
# Use of this software is governed by the Business Source License
# included in the LICENSE file and at <https://mariadb.com/bsl11>

"""
Recurrent additive network.

    i = sigmoid(Wi x + bi + Wir yPrev)
    g = sigmoid(Wf x + bf + Wfr yPrev)
    c = Wc x + bc
    s = i * c + g * sPrev
    y = f(s)

The state `s` is the output before its activation.
"""

import numpy as np

from ...activations import SIGMOID
from ...arrays import AugmentedArray, dot
from ...layer_types import ConnectionType
from ...parameters import LayerParameters, LinearParams, ParamsErrorsList, RecurrentLinearParams
from .base import RecurrentLayer, gate_deriv, unit_errors


class RANLayerParameters(LayerParameters):
    def __init__(self, input_size: int, output_size: int) -> None:
        super().__init__([input_size], output_size)
        self.input_gate = RecurrentLinearParams(input_size, output_size, name="input_gate")
        self.forget_gate = RecurrentLinearParams(input_size, output_size, name="forget_gate")
        self.candidate = LinearParams(input_size, output_size, name="candidate")
        for unit in (self.input_gate, self.forget_gate, self.candidate):
            self._register_linear(unit)


class RANLayer(RecurrentLayer):
    connection_type = ConnectionType.RAN

    def __init__(self, input_array, output_array, params, layers_window, activation=None, dropout=0.0, rng=None):
        super().__init__(input_array, output_array, params, layers_window, activation, dropout, rng)
        size = self.output_array.size
        self.output_array.set_activation(self.activation_function)
        self.input_gate = AugmentedArray.zeros(size, SIGMOID)
        self.forget_gate = AugmentedArray.zeros(size, SIGMOID)
        self.candidate = AugmentedArray.zeros(size)

    def _prev_state_values(self):
        prev = self.prev_state()
        return None if prev is None else prev.output_array.values_not_activated

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

        self.candidate.assign_values(dot(x, p.candidate.w.values) + p.candidate.b.values)

        s = self.input_gate.values * self.candidate.values
        s_prev = self._prev_state_values()
        if s_prev is not None:
            s += self.forget_gate.values * s_prev
        self.output_array.assign_values(s)
        self.output_array.activate()

    def _backward(self, propagate_to_input: bool) -> ParamsErrorsList:
        next_layer = self._add_recurrent_errors()
        self.apply_output_activation_deriv()
        if next_layer is not None:
            self.output_array.add_errors(self._recurrent_state_errors(next_layer))

        x = self.input_array.values
        p = self.params
        y_prev = self.prev_output()
        s_prev = self._prev_state_values()
        gs = self.output_array.errors

        g_in = gs * self.candidate.values * gate_deriv(self.input_gate)
        g_cand = gs * self.input_gate.values
        if s_prev is not None:
            g_forget = gs * s_prev * gate_deriv(self.forget_gate)
        else:
            g_forget = np.zeros_like(gs)

        self.input_gate.assign_errors(g_in)
        self.forget_gate.assign_errors(g_forget)
        self.candidate.assign_errors(g_cand)

        if propagate_to_input:
            self.input_array.assign_errors(
                p.input_gate.w.values.T @ g_in + p.forget_gate.w.values.T @ g_forget + p.candidate.w.values.T @ g_cand
            )

        return self._params_errors(
            *unit_errors(p.input_gate, g_in, x, y_prev),
            *unit_errors(p.forget_gate, g_forget, x, y_prev),
            *unit_errors(p.candidate, g_cand, x, None),
        )

    def _recurrent_errors(self, next_layer: "RANLayer") -> np.ndarray:
        """The errors of the activated output, through the gates of the next state."""
        p = self.params
        return (
            p.input_gate.wr.values.T @ next_layer.input_gate.errors
            + p.forget_gate.wr.values.T @ next_layer.forget_gate.errors
        )

    def _recurrent_state_errors(self, next_layer: "RANLayer") -> np.ndarray:
        """The errors of the state, through the state of the next step."""
        return next_layer.output_array.errors * next_layer.forget_gate.values

    def get_init_hidden_errors(self) -> np.ndarray:
        # the initial array is both the previous output and the previous state
        next_layer = self.next_state()
        return super().get_init_hidden_errors() + self._recurrent_state_errors(next_layer)
