"""Tests for the classifier head, its state and its serialisation."""

import numpy as np
import pytest

from training.errors import InsufficientClasses, ModelNotReady
from training.head import (
    TrainableModel,
    build_head,
    copy_head,
    deserialize_head,
    serialize_head,
)


class TestBuildHead:
    def test_shape_and_layers(self, config):
        head = build_head(64, 3, config)
        assert head.outputs[0].shape[-1] == 3
        assert head.get_layer("predictions").activation.__name__ == "softmax"
        assert head.get_layer("dropout").rate == pytest.approx(0.2)

    @pytest.mark.parametrize("num_classes", [0, 1])
    def test_needs_two_classes(self, config, num_classes):
        with pytest.raises(InsufficientClasses):
            build_head(64, num_classes, config)

    def test_copy_is_independent(self, config):
        head = build_head(8, 2, config)
        clone = copy_head(head, config)
        for a, b in zip(head.get_weights(), clone.get_weights()):
            np.testing.assert_array_equal(a, b)

        kernel, bias = clone.get_layer("predictions").get_weights()
        clone.get_layer("predictions").set_weights([kernel + 1.0, bias])
        assert not np.array_equal(head.get_weights()[0], clone.get_weights()[0])


class TestTrainableModel:
    AB = ("class-a", "class-b")

    def test_not_ready_until_installed(self, config):
        model = TrainableModel()
        head = model.ensure_head(8, self.AB, config)
        assert not model.ready
        with pytest.raises(ModelNotReady):
            model.require_ready()

        model.install(head, self.AB)
        assert model.require_ready() is head
        assert model.num_classes == 2

    def test_ensure_head_reuses_matching_head(self, config):
        model = TrainableModel()
        head = model.ensure_head(8, self.AB, config)
        assert model.ensure_head(8, list(self.AB), config) is head
        assert model.ensure_head(8, self.AB + ("class-c",), config) is not head

    def test_ensure_head_rebuilds_on_reorder(self, config):
        model = TrainableModel()
        head = model.ensure_head(8, self.AB, config)
        model.install(head, self.AB)
        assert model.ensure_head(8, ("class-b", "class-a"), config) is not head
        assert not model.ready

    def test_invalidate_on_count_change(self, config):
        model = TrainableModel()
        model.install(model.ensure_head(8, self.AB, config), self.AB)
        model.invalidate(self.AB)
        assert model.ready
        model.invalidate(self.AB + ("class-c",))
        assert not model.ready
        assert model.head is None

    @pytest.mark.parametrize("signature", [
        ("class-b", "class-a"),
        ("class-a", "class-z"),
    ])
    def test_invalidate_on_same_count_change(self, config, signature):
        model = TrainableModel()
        model.install(model.ensure_head(8, self.AB, config), self.AB)
        model.invalidate(signature)
        assert not model.ready
        assert model.head is None
        assert model.signature == signature


class TestSerialisation:
    def test_round_trip(self, config):
        head = build_head(8, 2, config)
        payload = serialize_head(head, {"format": "x", "num_classes": 2})
        weights, manifest = deserialize_head(payload)
        assert manifest == {"format": "x", "num_classes": 2}
        for a, b in zip(head.get_weights(), weights):
            np.testing.assert_array_equal(a, b)

    def test_garbage_payload(self):
        with pytest.raises(ValueError):
            deserialize_head(b"not an archive")
