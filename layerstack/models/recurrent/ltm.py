# Copyright (C) 2025 Brantleigh Bunting
# SPDX-License-Identifier: BUSL-1.1
#
# Use of this software is governed by the Business Source License
# included in the LICENSE file and at <https://mariadb.com/bsl11>

"""
Long-term memory layer. Input and output have the same size.

    h = x + yPrev
    l1 = sigmoid(W1 h + b1)
    l2 = sigmoid(W2 h + b2)
    l3 = sigmoid(W3 h + b3)
    cell = l1 * l2 + cellPrev
    y = f(Wc cell) * l3

`f` is the layer activation, sigmoid when not given.
"""

import numpy as np

from ...activations import SIGMOID
from ...arrays import AugmentedArray, to_dense
from ...layer_types import ConnectionType
from ...parameters import LayerParameters, LinearParams, ParamsArray, ParamsErrorsList
from .base import RecurrentLayer, gate_deriv, unit_errors


class LTMLayerParameters(LayerParameters):
    def __init__(self, size: int) -> None:
        super().__init__([size], size)
        self.input_gate1 = LinearParams(size, size, name="input_gate1")
        self.input_gate2 = LinearParams(size, size, name="input_gate2")
        self.input_gate3 = LinearParams(size, size, name="input_gate3")
        self.cell = ParamsArray.zeros((size, size), name="cell")
        for unit in self.gates:
            self._register_linear(unit)
        self.weights_list.append(self.cell)

    @property
    def gates(self):
        return self.input_gate1, self.input_gate2, self.input_gate3


class LTMLayer(RecurrentLayer):
    connection_type = ConnectionType.LTM

    def __init__(self, input_array, output_array, params, layers_window, activation=None, dropout=0.0, rng=None):
        super().__init__(input_array, output_array, params, layers_window, activation, dropout, rng)
        size = self.output_array.size
        self.h = AugmentedArray.zeros(size)
        self.gate1 = AugmentedArray.zeros(size, SIGMOID)
        self.gate2 = AugmentedArray.zeros(size, SIGMOID)
        self.gate3 = AugmentedArray.zeros(size, SIGMOID)
        self.cell = AugmentedArray.zeros(size)
        self.cell_output = AugmentedArray.zeros(size, self.activation_function or SIGMOID)

    @property
    def gates(self):
        return self.gate1, self.gate2, self.gate3

    def set_init_hidden(self, array: np.ndarray) -> None:
        self.cell.assign_values(np.zeros(self.cell.size))
        super().set_init_hidden(array)

    def _forward(self) -> None:
        prev = self.prev_state()

        h = to_dense(self.input_array.values).copy()
        if prev is not None:
            h += prev.output_array.values
        self.h.assign_values(h)

        for unit, gate in zip(self.params.gates, self.gates):
            gate.assign_values(unit.w.values @ h + unit.b.values)
            gate.activate()

        cell = self.gate1.values * self.gate2.values
        if prev is not None:
            cell += prev.cell.values
        self.cell.assign_values(cell)

        self.cell_output.assign_values(self.params.cell.values @ cell)
        self.cell_output.activate()
        self.output_array.assign_values(self.cell_output.values * self.gate3.values)

    def _backward(self, propagate_to_input: bool) -> ParamsErrorsList:
        next_layer = self._add_recurrent_errors()

        p = self.params
        h = self.h.values
        gy = self.output_array.errors

        g3 = gy * self.cell_output.values * gate_deriv(self.gate3)
        g_cell_out = gy * self.gate3.values * gate_deriv(self.cell_output)
        self.cell_output.assign_errors(g_cell_out)

        g_cell = p.cell.values.T @ g_cell_out
        if next_layer is not None:
            g_cell = g_cell + next_layer.cell.errors
        self.cell.assign_errors(g_cell)

        g1 = g_cell * self.gate2.values * gate_deriv(self.gate1)
        g2 = g_cell * self.gate1.values * gate_deriv(self.gate2)

        errors = (g1, g2, g3)
        for gate, g in zip(self.gates, errors):
            gate.assign_errors(g)

        gh = sum(unit.w.values.T @ g for unit, g in zip(p.gates, errors))
        self.h.assign_errors(gh)
        if propagate_to_input:
            self.input_array.assign_errors(gh)

        pairs = []
        for unit, g in zip(p.gates, errors):
            pairs.extend(unit_errors(unit, g, h, None))
        pairs.append((p.cell, np.outer(g_cell_out, self.cell.values)))
        return self._params_errors(*pairs)

    def _recurrent_errors(self, next_layer: "LTMLayer") -> np.ndarray:
        # h of the next step is its input plus this output
        return next_layer.h.errors.copy()
