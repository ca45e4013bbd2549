# Copyright (C) 2025 Brantleigh Bunting
# SPDX-License-Identifier: BSL-1.1
#
# Use of this software is governed by the Business Source License
# included in the LICENSE file and at <https://mariadb.com/bsl11>

import logging

import numpy as np
import pytest
from numpy.testing import assert_allclose

from gradcheck import numerical_grad
from layerstack import LayerInterface, MSECalculator, SoftmaxCrossEntropyCalculator, StackedLayers, StackedLayersParameters
from layerstack.losses import LossCalculator

logger = logging.getLogger(__name__)


def test_mse():
    calc = MSECalculator()
    output = np.array([0.5, -1.0, 2.0])
    gold = np.array([1.0, -1.0, 0.0])
    assert_allclose(calc.calculate_errors(output, gold), [-0.5, 0.0, 2.0])
    assert calc.calculate_loss(output, gold) == pytest.approx(0.5 * (0.25 + 4.0))

    with pytest.raises(ValueError):
        calc.calculate_errors(output, np.ones(2))


def test_mse_errors_are_the_loss_gradient():
    calc = MSECalculator()
    output = np.array([0.3, -0.7, 1.1, 0.0])
    gold = np.array([0.1, 0.2, -0.4, 0.5])
    expected = numerical_grad(lambda: calc.calculate_loss(output, gold), output)
    assert_allclose(calc.calculate_errors(output, gold), expected, rtol=1e-6, atol=1e-9)


def test_cross_entropy():
    calc = SoftmaxCrossEntropyCalculator()
    output = np.array([0.2, 0.5, 0.3])
    gold = np.array([0.0, 1.0, 0.0])
    assert calc.calculate_loss(output, gold) == pytest.approx(-np.log(0.5))
    assert_allclose(calc.calculate_errors(output, gold), [0.0, -2.0, 0.0])


def test_cross_entropy_of_a_zero_probability():
    calc = SoftmaxCrossEntropyCalculator()
    gold = np.array([0.0, 1.0])
    with pytest.raises(ValueError):
        calc.calculate_loss(np.array([1.0, 0.0]), gold)
    with pytest.raises(ValueError):
        calc.calculate_errors(np.array([1.0, 0.0]), gold)
    # a zero probability where the gold is zero is fine
    assert calc.calculate_loss(np.array([0.0, 1.0]), gold) == pytest.approx(0.0)


def test_cross_entropy_through_softmax_gives_output_minus_gold():
    config = [
        LayerInterface(size=3),
        LayerInterface(size=4, connection_type="Feedforward", activation="softmax"),
    ]
    stack = StackedLayers(StackedLayersParameters(config, seed=5))
    calc = SoftmaxCrossEntropyCalculator()
    gold = np.array([0.0, 0.0, 1.0, 0.0])

    output = stack.forward(np.array([0.4, -0.2, 0.9])).copy()
    stack.backward(calc.calculate_errors(output, gold))
    pre_activation_errors = stack.output_layer.output_array.errors
    assert_allclose(pre_activation_errors, output - gold, atol=1e-12)


def test_errors_of_a_sequence():
    calc = MSECalculator()
    outputs = [np.ones(2), np.zeros(2)]
    errors = calc.calculate_errors_sequence(outputs, [None, np.ones(2)])
    assert errors[0] is None
    assert_allclose(errors[1], [-1.0, -1.0])
    with pytest.raises(ValueError):
        calc.calculate_errors_sequence(outputs, [None])


def test_calculator_requires_both_hooks():
    class LossOnly(LossCalculator):
        def calculate_loss(self, output, gold):
            return 0.0

    with pytest.raises(TypeError):
        LossOnly()
