# Copyright (C) 2025 Brantleigh Bunting
# SPDX-License-Identifier: BSL-1.1
#
# Use of this software is governed by the Business Source License
# included in the LICENSE file and at <https://mariadb.com/bsl11>

import logging
import threading

import numpy as np
import pytest
from numpy.testing import assert_allclose

from gradcheck import build_params
from layerstack import ParamsArray, ParamsErrors, ParamsErrorsCollector, ParamsErrorsList

logger = logging.getLogger(__name__)


def test_params_array_assign_keeps_the_shape():
    p = ParamsArray(np.zeros((2, 3)), name="w")
    values = p.values
    p.assign(np.ones((2, 3)))
    assert p.values is values
    assert_allclose(p.values, 1.0)
    with pytest.raises(ValueError):
        p.assign(np.ones(6))


def test_errors_shape_must_match():
    with pytest.raises(ValueError):
        ParamsErrors(ParamsArray(np.zeros(3)), np.zeros(4))


def test_errors_list_lookup_by_identity():
    a = ParamsArray(np.zeros(2), name="a")
    b = ParamsArray(np.zeros(2), name="b")
    errors = ParamsErrorsList([ParamsErrors(a, np.ones(2))])
    assert errors.get(a).params is a
    with pytest.raises(KeyError):
        errors.get(b)


def test_collector_sums_and_copies():
    p = ParamsArray(np.zeros(3), name="p")
    g = np.array([1.0, 2.0, 3.0])
    collector = ParamsErrorsCollector()
    collector.accumulate([ParamsErrors(p, g)])
    collector.accumulate([ParamsErrors(p, g)])

    assert_allclose(collector.get_errors(p).values, 2.0 * g)
    assert_allclose(g, [1.0, 2.0, 3.0])
    assert len(collector) == 1

    collector.clear()
    with pytest.raises(KeyError):
        collector.get_errors(p)


def test_collector_shared_by_threads():
    params = [ParamsArray(np.zeros(4), name=str(i)) for i in range(3)]
    collector = ParamsErrorsCollector()

    def work():
        for _ in range(200):
            collector.accumulate([ParamsErrors(p, np.ones(4)) for p in params])

    threads = [threading.Thread(target=work) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    for p in params:
        assert_allclose(collector.get_errors(p).values, 800.0)


def test_layer_parameters_order_and_copies():
    params = build_params("SimpleRecurrent", [4], 3)
    assert [p.name for p in params.params_list] == [p.name for p in params.weights_list + params.biases_list]
    assert params.input_size == 4

    zeros = params.zeros_copy()
    assert all(not z.values.any() for z in zeros.params_list)
    assert any(p.values.any() for p in params.params_list)

    clone = params.copy()
    for p, c in zip(params.params_list, clone.params_list):
        assert p is not c
        assert np.array_equal(p.values, c.values)


def test_set_params():
    params = build_params("Feedforward", [2], 2)
    params.set_params([np.eye(2), np.array([1.0, -1.0])])
    assert_allclose(params.unit.w.values, np.eye(2))
    assert_allclose(params.unit.b.values, [1.0, -1.0])
    with pytest.raises(ValueError):
        params.set_params([np.eye(2)])
