"""Tests for the JSON API, called through Django's ``RequestFactory``."""

import io
import json
import time

import numpy as np
import pytest
from django.core.files.uploadedfile import SimpleUploadedFile
from django.test import RequestFactory, override_settings
from PIL import Image

from classifier import views
from classifier.session_store import get_session, reset_session
from training.tasks import cancel_training

BUILTIN = {"base_model": "builtin", "prefer_gpu": False, "epochs": 2, "batch_size": 8, "shuffle_seed": 3}


@pytest.fixture(autouse=True)
def fresh_session():
    with override_settings(TEACHABLE_TRAINING=BUILTIN):
        reset_session()
        yield
        session = get_session()
        cancel_training(session)
        _wait_idle(session)
        reset_session()


@pytest.fixture
def rf():
    return RequestFactory()


def _wait_idle(session, timeout=120.0):
    deadline = time.monotonic() + timeout
    while session.orchestrator.is_running:
        if time.monotonic() > deadline:
            raise AssertionError("training did not finish in time")
        time.sleep(0.05)


def _png(rng, channel, name="frame.png"):
    pixels = rng.integers(0, 60, size=(40, 40, 3), dtype=np.uint8)
    pixels[..., channel] = 230
    out = io.BytesIO()
    Image.fromarray(pixels).save(out, format="PNG")
    return SimpleUploadedFile(name, out.getvalue(), content_type="image/png")


def _json(response):
    return json.loads(response.content)


def _upload(rf, rng, class_id, channel):
    request = rf.post(f"/classifier/api/classes/{class_id}/samples/", {"image": _png(rng, channel)})
    return views.api_add_sample(request, class_id=class_id)


def _fill(rf, rng, per_class=3):
    classes = _json(views.api_classes(rf.get("/classifier/api/classes/")))["classes"]
    for channel, cls in zip((0, 2), classes):
        for _ in range(per_class):
            assert _upload(rf, rng, cls["id"], channel).status_code == 201
    return classes


class TestClassesApi:
    def test_default_classes(self, rf):
        data = _json(views.api_classes(rf.get("/classifier/api/classes/")))
        assert [c["name"] for c in data["classes"]] == ["Class A", "Class B"]
        assert data["model_ready"] is False

    def test_add_rename_delete(self, rf):
        response = views.api_classes(rf.post(
            "/classifier/api/classes/", json.dumps({"name": "Cats"}), content_type="application/json",
        ))
        assert response.status_code == 201
        class_id = _json(response)["class"]["id"]

        response = views.api_rename_class(rf.post(
            "/x/", json.dumps({"name": "Dogs"}), content_type="application/json",
        ), class_id=class_id)
        assert _json(response)["class"]["name"] == "Dogs"

        response = views.api_delete_class(rf.post("/x/"), class_id=class_id)
        assert len(_json(response)["classes"]) == 2

    def test_rename_requires_name(self, rf):
        class_id = get_session().classes[0].id
        response = views.api_rename_class(rf.post("/x/", "{}", content_type="application/json"), class_id=class_id)
        assert response.status_code == 400

    def test_unknown_class_is_404(self, rf):
        response = views.api_delete_class(rf.post("/x/"), class_id="class-missing")
        assert response.status_code == 404

    def test_sample_upload_and_delete(self, rf, rng):
        class_id = get_session().classes[0].id
        response = _upload(rf, rng, class_id, 0)
        assert response.status_code == 201
        sample_id = _json(response)["sample"]["id"]

        response = views.api_delete_sample(rf.post("/x/"), class_id=class_id, sample_id=sample_id)
        assert response.status_code == 200
        response = views.api_delete_sample(rf.post("/x/"), class_id=class_id, sample_id=sample_id)
        assert response.status_code == 404

    def test_upload_rejects_wrong_type(self, rf):
        class_id = get_session().classes[0].id
        upload = SimpleUploadedFile("a.txt", b"hello", content_type="text/plain")
        response = views.api_add_sample(rf.post("/x/", {"image": upload}), class_id=class_id)
        assert response.status_code == 400

    def test_upload_rejects_undecodable_image(self, rf):
        class_id = get_session().classes[0].id
        upload = SimpleUploadedFile("a.png", b"not really png", content_type="image/png")
        response = views.api_add_sample(rf.post("/x/", {"image": upload}), class_id=class_id)
        assert response.status_code == 400
        assert _json(response)["kind"] == "InvalidImageFormat"

    def test_upload_requires_file(self, rf):
        class_id = get_session().classes[0].id
        response = views.api_add_sample(rf.post("/x/"), class_id=class_id)
        assert response.status_code == 400


class TestTrainingApi:
    def test_start_with_empty_classes_is_400(self, rf):
        response = views.api_training_start(rf.post("/x/"))
        assert response.status_code == 400
        assert _json(response)["kind"] == "EmptyClass"

    def test_train_then_classify(self, rf, rng):
        _fill(rf, rng)
        response = views.api_training_start(rf.post(
            "/x/", json.dumps({"epochs": 3}), content_type="application/json",
        ))
        assert response.status_code == 202
        assert _json(response)["run"]["total_epochs"] == 3

        _wait_idle(get_session())
        status = _json(views.api_training_status(rf.get("/x/")))
        assert status["state"] == "completed"
        assert status["model_ready"] is True
        assert len(status["run"]["history"]) == 3

        response = views.classify(rf.post("/classifier/classify/", {"image": _png(rng, 0)}))
        assert response.status_code == 200
        data = _json(response)
        assert len(data["predictions"]) == 2
        assert data["best"] == data["predictions"][0]
        assert sum(p["confidence"] for p in data["predictions"]) == pytest.approx(100.0, abs=0.01)

        stats = _json(views.api_stats(rf.get("/x/")))
        assert stats["total_samples"] == 6
        assert stats["training_state"] == "completed"

    def test_second_start_is_409(self, rf, rng):
        _fill(rf, rng)
        session = get_session()
        session.load_extractor()
        stream = session.start_training(2)
        try:
            response = views.api_training_start(rf.post("/x/"))
            assert response.status_code == 409
        finally:
            stream.close()

    def test_cancel_without_run_is_409(self, rf):
        assert views.api_training_cancel(rf.post("/x/")).status_code == 409

    def test_status_before_any_run(self, rf):
        status = _json(views.api_training_status(rf.get("/x/")))
        assert status["state"] == "idle"
        assert status["run"] is None


class TestClassifyAndModelApi:
    def test_classify_before_training_is_409(self, rf, rng):
        response = views.classify(rf.post("/classifier/classify/", {"image": _png(rng, 0)}))
        assert response.status_code == 409

    def test_export_before_training_is_409(self, rf):
        assert views.api_model_export(rf.get("/x/")).status_code == 409

    def test_export_and_import(self, rf, rng):
        _fill(rf, rng)
        session = get_session()
        session.load_extractor()
        list(session.start_training(1))

        response = views.api_model_export(rf.get("/x/"))
        assert response.status_code == 200
        assert response["Content-Type"] == "application/octet-stream"
        payload = response.content

        reset_session()
        response = views.api_model_import(rf.post("/x/", data=payload, content_type="application/octet-stream"))
        assert response.status_code == 200
        assert _json(response)["model_ready"] is True
        assert get_session().ready

    def test_import_garbage_is_400(self, rf):
        response = views.api_model_import(rf.post("/x/", data=b"junk", content_type="application/octet-stream"))
        assert response.status_code == 400

    def test_import_empty_is_400(self, rf):
        response = views.api_model_import(rf.post("/x/", data=b"", content_type="application/octet-stream"))
        assert response.status_code == 400
