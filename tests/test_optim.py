# Copyright (C) 2025 Brantleigh Bunting
# SPDX-License-Identifier: BSL-1.1
#
# Use of this software is governed by the Business Source License
# included in the LICENSE file and at <https://mariadb.com/bsl11>

import gc
import logging

import numpy as np
import pytest
from numpy.testing import assert_allclose

from layerstack import (
    ADAMMethod,
    AdaGradMethod,
    LayerInterface,
    LearningRateMethod,
    MSECalculator,
    ParamsArray,
    ParamsErrors,
    ParamsErrorsCollector,
    RecurrentSequenceProcessor,
    StackedLayersParameters,
)
from layerstack.optim import UpdateMethod

logger = logging.getLogger(__name__)


def collector_of(*pairs):
    collector = ParamsErrorsCollector()
    collector.accumulate([ParamsErrors(p, g) for p, g in pairs])
    return collector


def test_learning_rate_step():
    w = ParamsArray(np.ones((2, 2)), name="w")
    b = ParamsArray(np.zeros(2), name="b")
    collector = collector_of((w, np.full((2, 2), 2.0)), (b, np.array([1.0, -1.0])))

    LearningRateMethod(0.1).update(collector)

    assert_allclose(w.values, np.full((2, 2), 0.8))
    assert_allclose(b.values, [-0.1, 0.1])
    assert len(collector) == 0


def test_collector_kept_on_request():
    w = ParamsArray(np.ones(3))
    collector = collector_of((w, np.ones(3)))
    LearningRateMethod(0.5).update(collector, clear=False)
    assert len(collector) == 1


def test_weight_decay_applies_to_matrices_only():
    w = ParamsArray(np.full((2, 3), 2.0))
    b = ParamsArray(np.full(3, 2.0))
    collector = collector_of((w, np.zeros((2, 3))), (b, np.zeros(3)))

    LearningRateMethod(0.1, weight_decay=0.5).update(collector)

    assert_allclose(w.values, np.full((2, 3), 2.0 - 0.1 * 0.5 * 2.0))
    assert_allclose(b.values, np.full(3, 2.0))


def test_adagrad():
    w = ParamsArray(np.zeros(2))
    method = AdaGradMethod(learning_rate=0.1, epsilon=0.0)

    method.update(collector_of((w, np.array([2.0, -4.0]))))
    assert_allclose(w.values, [-0.1, 0.1])

    method.update(collector_of((w, np.array([2.0, 0.0]))))
    assert_allclose(w.values, [-0.1 - 0.1 * 2.0 / np.sqrt(8.0), 0.1])


def test_adam_first_step_is_learning_rate_times_sign():
    w = ParamsArray(np.zeros(3))
    method = ADAMMethod(learning_rate=0.01)
    method.update(collector_of((w, np.array([5.0, -0.2, 1e-3]))))
    assert method.t == 1
    assert_allclose(w.values, [-0.01, 0.01, -0.01], rtol=1e-4)


def test_adam_keeps_state_per_parameter():
    a = ParamsArray(np.zeros(2))
    b = ParamsArray(np.zeros(2))
    method = ADAMMethod()
    method.update(collector_of((a, np.ones(2)), (b, -np.ones(2))))
    method.update(collector_of((a, np.ones(2))))
    assert method.t == 2
    assert set(method.state.keys()) == {a, b}


@pytest.mark.parametrize("method", [AdaGradMethod(), ADAMMethod()], ids=["adagrad", "adam"])
def test_state_goes_away_with_the_parameter(method):
    p = ParamsArray(np.ones(2))
    method.update(collector_of((p, np.ones(2))))
    assert p in method.state

    del p
    gc.collect()
    assert len(method.state) == 0

    fresh = ParamsArray(np.zeros(2))
    method.update(collector_of((fresh, np.array([1.0, -1.0]))))
    assert len(method.state) == 1


def test_update_method_requires_an_update_rule():
    class NoRule(UpdateMethod):
        pass

    with pytest.raises(TypeError):
        NoRule(0.1)


@pytest.mark.parametrize("kwargs", [dict(learning_rate=0.0), dict(learning_rate=0.1, weight_decay=-1.0)])
def test_invalid_hyper_parameters(kwargs):
    with pytest.raises(ValueError):
        LearningRateMethod(**kwargs)


def test_training_a_sequence_reduces_the_loss():
    config = [
        LayerInterface(size=3),
        LayerInterface(size=6, connection_type="GRU", activation="tanh"),
        LayerInterface(size=2, connection_type="Feedforward"),
    ]
    params = StackedLayersParameters(config, seed=4)
    processor = RecurrentSequenceProcessor(params)
    calc = MSECalculator()
    method = ADAMMethod(learning_rate=0.02)

    inputs = [np.array([1.0, 0.0, 0.0]), np.array([0.0, 1.0, 0.0]), np.array([0.0, 0.0, 1.0])]
    golds = [None, np.array([0.5, -0.5]), np.array([-0.25, 0.75])]

    def sequence_loss(outputs):
        return sum(calc.calculate_loss(o, g) for o, g in zip(outputs, golds) if g is not None)

    first = None
    for epoch in range(100):
        outputs = processor.forward(inputs)
        loss = sequence_loss(outputs)
        if first is None:
            first = loss
        logger.debug("epoch %d: loss %.6f", epoch, loss)
        collector = processor.backward(calc.calculate_errors_sequence(outputs, golds))
        method.update(collector)

    assert sequence_loss(processor.forward(inputs)) < 0.5 * first
