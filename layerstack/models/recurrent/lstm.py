# Copyright (C) 2025 Brantleigh Bunting
# SPDX-License-Identifier: BUSL-1.1
#
# Use of this software is governed by the Business Source License
# included in the LICENSE file and at <https://mariadb.com/bsl11>

"""
Long short-term memory.

    i = sigmoid(Wi x + bi + Wir yPrev)
    g = sigmoid(Wf x + bf + Wfr yPrev)
    o = sigmoid(Wo x + bo + Wor yPrev)
    c = f(Wc x + bc + Wcr yPrev)
    cell = i * c + g * cellPrev
    y = o * f(cell)
"""

import numpy as np

from ...activations import SIGMOID
from ...arrays import AugmentedArray, dot
from ...layer_types import ConnectionType
from ...parameters import LayerParameters, ParamsErrorsList, RecurrentLinearParams
from .base import RecurrentLayer, gate_deriv, unit_errors


class LSTMLayerParameters(LayerParameters):
    def __init__(self, input_size: int, output_size: int) -> None:
        super().__init__([input_size], output_size)
        self.input_gate = RecurrentLinearParams(input_size, output_size, name="input_gate")
        self.output_gate = RecurrentLinearParams(input_size, output_size, name="output_gate")
        self.forget_gate = RecurrentLinearParams(input_size, output_size, name="forget_gate")
        self.candidate = RecurrentLinearParams(input_size, output_size, name="candidate")
        for unit in self.units:
            self._register_linear(unit)

    @property
    def units(self):
        return self.input_gate, self.output_gate, self.forget_gate, self.candidate


class LSTMLayer(RecurrentLayer):
    connection_type = ConnectionType.LSTM

    def __init__(self, input_array, output_array, params, layers_window, activation=None, dropout=0.0, rng=None):
        super().__init__(input_array, output_array, params, layers_window, activation, dropout, rng)
        size = self.output_array.size
        self.input_gate = AugmentedArray.zeros(size, SIGMOID)
        self.output_gate = AugmentedArray.zeros(size, SIGMOID)
        self.forget_gate = AugmentedArray.zeros(size, SIGMOID)
        self.candidate = AugmentedArray.zeros(size, self.activation_function)
        self.cell = AugmentedArray.zeros(size, self.activation_function)

    @property
    def gates(self):
        return self.input_gate, self.output_gate, self.forget_gate, self.candidate

    def set_init_hidden(self, array: np.ndarray) -> None:
        self.cell.assign_values(np.zeros(self.cell.size))
        super().set_init_hidden(array)

    def _prev_cell(self):
        prev = self.prev_state()
        return None if prev is None else prev.cell.values_not_activated

    def _forward(self) -> None:
        x = self.input_array.values
        y_prev = self.prev_output()

        for unit, gate in zip(self.params.units, self.gates):
            pre = dot(x, unit.w.values) + unit.b.values
            if y_prev is not None:
                pre += unit.wr.values @ y_prev
            gate.assign_values(pre)
            gate.activate()

        cell = self.input_gate.values * self.candidate.values
        cell_prev = self._prev_cell()
        if cell_prev is not None:
            cell += self.forget_gate.values * cell_prev
        self.cell.assign_values(cell)
        self.cell.activate()

        self.output_array.assign_values(self.output_gate.values * self.cell.values)

    def _backward(self, propagate_to_input: bool) -> ParamsErrorsList:
        next_layer = self._add_recurrent_errors()

        x = self.input_array.values
        p = self.params
        y_prev = self.prev_output()
        cell_prev = self._prev_cell()
        gy = self.output_array.errors

        g_out = gy * self.cell.values * gate_deriv(self.output_gate)
        g_cell = gy * self.output_gate.values * gate_deriv(self.cell)
        if next_layer is not None:
            g_cell = g_cell + next_layer.cell.errors * next_layer.forget_gate.values
        self.cell.assign_errors(g_cell)

        g_in = g_cell * self.candidate.values * gate_deriv(self.input_gate)
        g_cand = g_cell * self.input_gate.values * gate_deriv(self.candidate)
        if cell_prev is not None:
            g_forget = g_cell * cell_prev * gate_deriv(self.forget_gate)
        else:
            g_forget = np.zeros_like(gy)

        errors = (g_in, g_out, g_forget, g_cand)
        for gate, g in zip(self.gates, errors):
            gate.assign_errors(g)

        if propagate_to_input:
            self.input_array.assign_errors(sum(unit.w.values.T @ g for unit, g in zip(p.units, errors)))

        pairs = []
        for unit, g in zip(p.units, errors):
            pairs.extend(unit_errors(unit, g, x, y_prev))
        return self._params_errors(*pairs)

    def _recurrent_errors(self, next_layer: "LSTMLayer") -> np.ndarray:
        return sum(unit.wr.values.T @ gate.errors for unit, gate in zip(self.params.units, next_layer.gates))
