"""Tests for the training orchestrator and its run lifecycle."""

import asyncio
import gc
import itertools

import numpy as np
import pytest

import training.train as train_module
from training.data import TrainingClass
from training.errors import (
    EmptyClass,
    ExtractorNotLoaded,
    InsufficientClasses,
    ModelNotReady,
    TrainingAlreadyRunning,
    TrainingFailed,
)
from training.session import Session
from training.train import RunState, split_indices


class TestSplitIndices:
    def test_split_sizes(self):
        train, val = split_indices(10, 0.2, seed=0)
        assert len(train) == 8
        assert len(val) == 2
        assert sorted(np.concatenate([train, val]).tolist()) == list(range(10))

    def test_always_keeps_a_training_sample(self):
        train, val = split_indices(1, 0.9, seed=0)
        assert len(train) == 1
        assert len(val) == 0

    def test_seeded_shuffle_is_reproducible(self):
        a = split_indices(20, 0.2, seed=3)
        b = split_indices(20, 0.2, seed=3)
        np.testing.assert_array_equal(a[0], b[0])


class TestPreconditions:
    def test_extractor_must_be_loaded(self, config, make_buffer):
        session = Session(config)
        with pytest.raises(ExtractorNotLoaded):
            session.start_training(1)

    def test_single_class(self, session, make_buffer):
        session.remove_class(session.classes[1].id)
        session.add_sample(session.classes[0].id, make_buffer())
        with pytest.raises(InsufficientClasses):
            session.start_training(1)
        assert not session.orchestrator.is_running

    def test_empty_class_among_three(self, filled_session):
        filled_session.add_class()
        with pytest.raises(EmptyClass) as excinfo:
            filled_session.start_training(1)
        assert excinfo.value.class_names == ["Class C"]
        assert filled_session.training_state is RunState.IDLE

    @pytest.mark.parametrize("epochs", [0, -1, True, 2.5])
    def test_bad_epoch_count(self, filled_session, epochs):
        with pytest.raises(ValueError):
            filled_session.start_training(epochs)

    def test_second_start_while_running(self, filled_session):
        stream = filled_session.start_training(2)
        assert filled_session.orchestrator.is_running
        with pytest.raises(TrainingAlreadyRunning):
            filled_session.start_training(2)

        stream.close()
        assert stream.state is RunState.CANCELLED
        assert not filled_session.orchestrator.is_running

    def test_dropped_unstarted_stream_releases_the_run(self, filled_session):
        stream = filled_session.start_training(2)
        run = stream.run
        del stream
        gc.collect()

        assert run.state is RunState.CANCELLED
        assert not filled_session.orchestrator.is_running
        records = list(filled_session.start_training(1))
        assert len(records) == 1
        assert filled_session.training_state is RunState.COMPLETED

    def test_rejected_start_leaves_original_stream_running(self, filled_session):
        stream = filled_session.start_training(2)
        first = next(stream)
        with pytest.raises(TrainingAlreadyRunning):
            filled_session.start_training(2)
        rest = list(stream)

        assert [first.epoch] + [p.epoch for p in rest] == [1, 2]
        assert stream.state is RunState.COMPLETED


class TestRun:
    def test_end_to_end(self, filled_session, make_buffer):
        records = list(filled_session.start_training(5))

        assert [p.epoch for p in records] == [1, 2, 3, 4, 5]
        assert all(p.total_epochs == 5 for p in records)
        assert all(p.samples_processed == 6 for p in records)
        assert all(0.0 <= p.accuracy <= 1.0 for p in records)
        assert all(p.loss >= 0.0 for p in records)

        run = filled_session.run
        assert run.state is RunState.COMPLETED
        assert run.history == tuple(records)
        assert run.num_samples == 6
        assert filled_session.ready
        assert not filled_session.orchestrator.is_running

        ranked = filled_session.predict(make_buffer(channel=0))
        assert len(ranked) == 2
        assert sum(p.confidence for p in ranked) == pytest.approx(100.0, abs=1e-3)
        assert ranked[0].confidence >= ranked[1].confidence

    def test_elapsed_time_uses_injected_clock(self, config, make_buffer):
        ticks = itertools.count(start=100.0, step=1.5)
        session = Session(config, clock=lambda: next(ticks))
        session.load_extractor()
        a, b = session.classes
        session.add_sample(a.id, make_buffer(channel=0))
        session.add_sample(b.id, make_buffer(channel=2))

        records = list(session.start_training(3))
        elapsed = [p.elapsed_seconds for p in records]
        assert elapsed == sorted(elapsed)
        assert elapsed[0] > 0

    def test_validation_metrics_are_attached(self, filled_session):
        list(filled_session.start_training(2))
        metrics = filled_session.run.metrics
        assert metrics["num_samples"] == 1
        assert len(metrics["confusion_matrix"]) == 2
        assert [row["class"] for row in metrics["per_class"]] == ["Class A", "Class B"]

    def test_cancel_stops_at_epoch_boundary(self, filled_session):
        stream = filled_session.start_training(5)
        first = next(stream)
        stream.cancel()
        rest = list(stream)

        assert first.epoch == 1
        assert rest == []
        assert filled_session.training_state is RunState.CANCELLED
        assert not filled_session.ready
        assert not filled_session.orchestrator.is_running

    def test_context_manager_closes_early(self, filled_session):
        with filled_session.start_training(5) as stream:
            next(stream)
        assert stream.state is RunState.CANCELLED
        assert len(filled_session.training_history) == 1

    def test_cancelled_run_keeps_previous_head(self, filled_session):
        list(filled_session.start_training(1))
        head = filled_session.model.head

        with filled_session.start_training(3) as stream:
            next(stream)
        assert filled_session.ready
        assert filled_session.model.head is head

    def test_failure_keeps_previous_head(self, filled_session, monkeypatch):
        list(filled_session.start_training(1))
        head = filled_session.model.head

        def explode(*args, **kwargs):
            raise RuntimeError("disk on fire")

        monkeypatch.setattr(train_module, "evaluate_head", explode)
        with pytest.raises(TrainingFailed) as excinfo:
            list(filled_session.start_training(2))

        assert isinstance(excinfo.value.cause, RuntimeError)
        run = filled_session.run
        assert run.state is RunState.FAILED
        assert "disk on fire" in run.error_message
        assert filled_session.ready
        assert filled_session.model.head is head
        assert not filled_session.orchestrator.is_running

    def test_new_run_after_failure(self, filled_session, monkeypatch):
        def explode(*args, **kwargs):
            raise RuntimeError("boom")

        monkeypatch.setattr(train_module, "evaluate_head", explode)
        with pytest.raises(TrainingFailed):
            list(filled_session.start_training(1))
        monkeypatch.undo()

        list(filled_session.start_training(1))
        assert filled_session.training_state is RunState.COMPLETED

    def test_sample_edits_during_run_do_not_affect_it(self, filled_session, make_buffer):
        stream = filled_session.start_training(2)
        next(stream)
        a = filled_session.classes[0]
        filled_session.add_sample(a.id, make_buffer())
        filled_session.rename_class(a.id, "Renamed")
        list(stream)

        assert filled_session.run.num_samples == 6
        assert filled_session.training_state is RunState.COMPLETED

    def test_structure_changes_are_refused_while_running(self, filled_session):
        with filled_session.start_training(2) as stream:
            next(stream)
            with pytest.raises(TrainingAlreadyRunning):
                filled_session.add_class()
            with pytest.raises(TrainingAlreadyRunning):
                filled_session.remove_class(filled_session.classes[0].id)

    def test_adding_a_class_invalidates_trained_head(self, filled_session):
        list(filled_session.start_training(1))
        assert filled_session.ready
        filled_session.add_class()
        assert not filled_session.ready
        assert filled_session.model.num_classes == 3

    def test_reordering_classes_invalidates_trained_head(self, filled_session, make_buffer):
        list(filled_session.start_training(2))
        a, b = filled_session.classes
        filled_session.set_classes([b, a])

        assert not filled_session.ready
        assert filled_session.model.signature == (b.id, a.id)
        with pytest.raises(ModelNotReady):
            filled_session.predict(make_buffer())

        list(filled_session.start_training(1))
        assert filled_session.ready
        assert filled_session.run.metrics["per_class"][0]["class"] == "Class B"

    def test_replacing_a_class_at_same_count_invalidates(self, filled_session, make_buffer):
        list(filled_session.start_training(1))
        a, _ = filled_session.classes
        fresh = TrainingClass("Fresh", "blue")
        filled_session.set_classes([a, fresh])

        assert len(filled_session.classes) == 2
        assert not filled_session.ready
        assert filled_session.model.signature == (a.id, fresh.id)

    def test_same_class_list_keeps_trained_head(self, filled_session):
        list(filled_session.start_training(1))
        head = filled_session.model.head
        filled_session.set_classes(list(filled_session.classes))
        assert filled_session.ready
        assert filled_session.model.head is head

    def test_reorder_refused_while_running(self, filled_session):
        a, b = filled_session.classes
        with filled_session.start_training(2) as stream:
            next(stream)
            with pytest.raises(TrainingAlreadyRunning):
                filled_session.set_classes([b, a])
        assert filled_session.dataset.shape_signature == (a.id, b.id)


class TestAsync:
    def test_async_iteration(self, filled_session):
        async def drive():
            return [p.epoch async for p in filled_session.atrain(3)]

        assert asyncio.run(drive()) == [1, 2, 3]
        assert filled_session.training_state is RunState.COMPLETED
        assert filled_session.ready
