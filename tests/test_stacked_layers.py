# Copyright (C) 2025 Brantleigh Bunting
# SPDX-License-Identifier: BSL-1.1
#
# Use of this software is governed by the Business Source License
# included in the LICENSE file and at <https://mariadb.com/bsl11>

import io
import logging

import numpy as np
import pytest
from numpy.testing import assert_allclose

from gradcheck import ATOL, RTOL, numerical_grad
from layerstack import (
    ConfigurationError,
    LayerInterface,
    ParamsErrorsCollector,
    SparseBinaryArray,
    StackedLayers,
    StackedLayersParameters,
)

logger = logging.getLogger(__name__)


def feedforward_config():
    return [
        LayerInterface(size=4),
        LayerInterface(size=5, connection_type="Feedforward", activation="tanh"),
        LayerInterface(size=3, connection_type="Feedforward", activation="softmax"),
    ]


@pytest.fixture
def params():
    return StackedLayersParameters(feedforward_config(), seed=0)


def test_params_properties(params):
    assert params.num_of_layers == 2
    assert params.input_size == 4
    assert params.inputs_size == [4]
    assert params.output_size == 3
    assert len(params.params_list) == 4
    assert params.get_layer_params(1).unit.w.shape == (3, 5)


@pytest.mark.parametrize("index", [-1, 2, 10])
def test_get_layer_params_out_of_range(params, index):
    with pytest.raises(ConfigurationError, match=r"Layer index \(.*\) out of range \(\[0, 1\]\)\."):
        params.get_layer_params(index)


def test_seeded_params_are_reproducible():
    a = StackedLayersParameters(feedforward_config(), seed=3)
    b = StackedLayersParameters(feedforward_config(), seed=3)
    for pa, pb in zip(a.params_list, b.params_list):
        assert np.array_equal(pa.values, pb.values)


def test_dump_and_load(params):
    stream = io.BytesIO()
    params.dump(stream)
    stream.seek(0)
    loaded = StackedLayersParameters.load(stream)

    assert loaded.num_of_layers == params.num_of_layers
    for original, copy in zip(params.params_list, loaded.params_list):
        assert original is not copy
        assert np.array_equal(original.values, copy.values)

    x = np.array([0.1, -0.4, 0.7, 0.2])
    assert_allclose(StackedLayers(loaded).forward(x), StackedLayers(params).forward(x))


def test_dump_to_a_file_keeps_the_variant_options(tmp_path):
    config = [
        LayerInterface(size=4),
        LayerInterface(size=6, connection_type="TPR", n_symbols=3, d_symbols=2, n_roles=4, d_roles=3, q=0.5),
        LayerInterface(size=2, connection_type="Feedforward", activation="softmax"),
    ]
    params = StackedLayersParameters(config, seed=2)
    path = tmp_path / "params.npz"
    params.dump(path)

    with np.load(path) as z:
        assert "config" in z.files
    loaded = StackedLayersParameters.load(path)

    assert [c.to_dict() for c in loaded.layers_configuration] == [c.to_dict() for c in config]
    assert len(loaded.params_list) == len(params.params_list)
    for original, copy in zip(params.params_list, loaded.params_list):
        assert original.shape == copy.shape
        assert np.array_equal(original.values, copy.values)


def test_load_rejects_foreign_archives():
    stream = io.BytesIO()
    np.savez(stream, w=np.ones(3))
    stream.seek(0)
    with pytest.raises(ConfigurationError):
        StackedLayersParameters.load(stream)


def test_load_rejects_mismatched_tensors(params):
    stream = io.BytesIO()
    params.dump(stream)
    stream.seek(0)
    with np.load(stream) as z:
        arrays = {k: z[k] for k in z.files}
    arrays["l0_p0"] = np.zeros((2, 2))

    broken = io.BytesIO()
    np.savez(broken, **arrays)
    broken.seek(0)
    with pytest.raises(ConfigurationError):
        StackedLayersParameters.load(broken)


@pytest.mark.parametrize(
    "config",
    [
        [LayerInterface(size=4)],
        [LayerInterface(size=4), LayerInterface(size=3)],
        [LayerInterface(size=4, connection_type="Feedforward"), LayerInterface(size=3, connection_type="Feedforward")],
        [
            LayerInterface(size=4),
            LayerInterface(size=4, connection_type="Feedforward"),
            LayerInterface(size=4, connection_type="Sum"),
        ],
        [LayerInterface(sizes=[4, 4]), LayerInterface(size=4, connection_type="BatchNorm")],
        [LayerInterface(sizes=[4, 4]), LayerInterface(size=4, connection_type="Feedforward")],
    ],
)
def test_invalid_configurations(config):
    with pytest.raises(ConfigurationError):
        StackedLayersParameters(config)


def test_layers_share_their_arrays(params):
    stack = StackedLayers(params)
    assert stack.layers[0].output_array is stack.layers[1].input_array
    assert stack.input_layer is stack.layers[0]
    assert stack.output_layer is stack.layers[1]
    assert stack.layers[0].params is params.get_layer_params(0)


def test_forward(params):
    stack = StackedLayers(params)
    x = np.array([0.1, -0.4, 0.7, 0.2])
    y = stack.forward(x)

    p0, p1 = params.params_per_layer
    h = np.tanh(p0.unit.w.values @ x + p0.unit.b.values)
    z = p1.unit.w.values @ h + p1.unit.b.values
    expected = np.exp(z - z.max()) / np.exp(z - z.max()).sum()
    assert_allclose(y, expected)
    assert_allclose(y.sum(), 1.0)


def test_backward_matches_finite_differences(params):
    stack = StackedLayers(params)
    x = np.array([0.1, -0.4, 0.7, 0.2])
    w = np.array([0.3, -1.0, 0.6])

    def loss():
        return float(stack.forward(x) @ w)

    loss()
    collector = ParamsErrorsCollector()
    errors = stack.backward(w, propagate_to_input=True, collector=collector)
    input_errors = stack.get_input_errors().copy()

    assert len(errors) == len(params.params_list)
    for p in params.params_list:
        expected = numerical_grad(loss, p.values)
        assert_allclose(errors.get(p).values, expected, rtol=RTOL, atol=ATOL)
        assert_allclose(collector.get_errors(p).values, expected, rtol=RTOL, atol=ATOL)
    assert_allclose(input_errors, numerical_grad(loss, x), rtol=RTOL, atol=ATOL)


def test_merge_input_layer():
    config = [
        LayerInterface(sizes=[3, 2]),
        LayerInterface(size=4, connection_type="Affine", activation="tanh"),
        LayerInterface(size=2, connection_type="Feedforward"),
    ]
    stack = StackedLayers(StackedLayersParameters(config, seed=1))
    y = stack.forward([np.ones(3), np.ones(2)])
    assert y.shape == (2,)
    stack.backward(np.ones(2), propagate_to_input=True)
    errors = stack.get_input_errors()
    assert [e.shape for e in errors] == [(3,), (2,)]


def test_sparse_input_stack():
    config = [
        LayerInterface(size=6, type="sparse_binary"),
        LayerInterface(size=3, connection_type="Feedforward", activation="relu"),
        LayerInterface(size=2, connection_type="Feedforward"),
    ]
    stack = StackedLayers(StackedLayersParameters(config, seed=1))
    stack.forward(SparseBinaryArray(6, [1, 4]))
    stack.backward(np.ones(2), propagate_to_input=True)
    assert stack.get_input_errors().shape == (6,)


def test_recurrent_layers_require_a_recurrent_stack():
    config = [LayerInterface(size=4), LayerInterface(size=3, connection_type="GRU")]
    with pytest.raises(ConfigurationError):
        StackedLayers(StackedLayersParameters(config))


def test_dropout_per_layer(params):
    stack = StackedLayers(params, dropout=[0.5, 0.0], seed=0)
    assert [layer.dropout for layer in stack.layers] == [0.5, 0.0]
    with pytest.raises(ConfigurationError):
        StackedLayers(params, dropout=[0.5])


def test_dropout_restores_the_stack_values(params):
    stack = StackedLayers(params, dropout=0.4, seed=0)
    x = np.array([0.1, -0.4, 0.7, 0.2])
    stack.forward(x)
    stack.backward(np.ones(3), propagate_to_input=True)

    assert np.array_equal(stack.input_layer.input_array.values, x)
    hidden = stack.layers[0].output_array
    assert_allclose(hidden.values, np.tanh(hidden.values_not_activated))
