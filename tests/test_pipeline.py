"""Tests for request validation and the prediction pipeline."""

import math

import numpy as np
import pytest

from service_model_serving.app.errors import (
    InternalPredictError,
    InvalidPointError,
    InvalidThresholdError,
    MalformedBodyError,
    MissingFieldError,
    PayloadValidationError,
    UnexpectedOutputShapeError,
)
from service_model_serving.app.loaders.model_loader import ModelHandle
from service_model_serving.app.runtime.pipeline import (
    DEFAULT_THRESHOLD,
    PredictionPipeline,
    PredictionRequest,
    apply_threshold,
    decode_probabilities,
    parse_request,
)
from tests.conftest import StubBackend, StubGraph


def make_handle(graph):
    return ModelHandle(
        graph=graph, input_name="points", output_name="probability",
        backend_id="stub", source="memory"
    )


class TestParseRequest:
    """Validation happens before, and independently of, any backend call."""

    def test_batch_of_points(self):
        request = parse_request({"points": [[0, 0], [1.5, -2]], "threshold": 0.3})
        assert request.points == ((0.0, 0.0), (1.5, -2.0))
        assert request.threshold == 0.3

    def test_single_pair_is_batch_of_one(self):
        assert parse_request({"points": [3, 4]}) == parse_request({"points": [[3, 4]]})

    def test_default_threshold_is_half(self):
        assert parse_request({"points": [[1, 2]]}).threshold == 0.5
        assert parse_request({"points": [[1, 2]], "threshold": None}).threshold == DEFAULT_THRESHOLD

    def test_largest_float32_coordinate_is_accepted(self):
        limit = float(np.finfo(np.float32).max)
        request = parse_request({"points": [[limit, -limit]]})
        assert request.points == ((limit, -limit),)

    def test_threshold_outside_unit_interval_is_accepted(self):
        assert parse_request({"points": [[1, 2]], "threshold": 1.7}).threshold == 1.7
        assert parse_request({"points": [[1, 2]], "threshold": -3}).threshold == -3.0

    @pytest.mark.parametrize("payload, error", [
        ({}, MissingFieldError),
        ({"points": None}, MissingFieldError),
        ({"points": [[1, "a"]]}, InvalidPointError),
        ({"points": [[1, 2, 3]]}, InvalidPointError),
        ({"points": [[1]]}, InvalidPointError),
        ({"points": []}, InvalidPointError),
        ({"points": "1,2"}, InvalidPointError),
        ({"points": 5}, InvalidPointError),
        ({"points": [[1, 2], [3, None]]}, InvalidPointError),
        ({"points": [[1, 2], 3]}, InvalidPointError),
        ({"points": [[True, 2]]}, InvalidPointError),
        ({"points": [[float("nan"), 2]]}, InvalidPointError),
        ({"points": [[float("inf"), 2]]}, InvalidPointError),
        ({"points": [[10 ** 400, 2]]}, InvalidPointError),
        ({"points": [[1e39, 2]]}, InvalidPointError),
        ({"points": [[0, -3.5e38]]}, InvalidPointError),
        ({"points": [[1, 2]], "threshold": "high"}, InvalidThresholdError),
        ({"points": [[1, 2]], "threshold": float("nan")}, InvalidThresholdError),
        ({"points": [[1, 2]], "threshold": False}, InvalidThresholdError),
        ([[1, 2]], MalformedBodyError),
        ("points", MalformedBodyError),
    ])
    def test_rejects_malformed_payloads(self, payload, error):
        with pytest.raises(error) as exc_info:
            parse_request(payload)
        assert isinstance(exc_info.value, PayloadValidationError)
        assert exc_info.value.status_code == 400


class TestDecoding:

    def test_column_output(self):
        assert decode_probabilities(np.array([[0.2], [0.8]]), 2) == [0.2, 0.8]

    def test_flat_output(self):
        assert decode_probabilities(np.array([0.2, 0.8]), 2) == [0.2, 0.8]

    @pytest.mark.parametrize("output", [
        np.array([[0.2, 0.8], [0.3, 0.7]]),
        np.zeros((2, 1, 1)),
        np.array(0.5),
        np.array([0.2, 0.8, 0.5]),
        np.array([[0.2], [math.nan]]),
    ])
    def test_unexpected_output_is_rejected(self, output):
        with pytest.raises(UnexpectedOutputShapeError):
            decode_probabilities(output, 2)

    def test_threshold_is_inclusive(self):
        assert apply_threshold([0.1, 0.3, 0.30000001, 0.29], 0.3) == [0, 1, 1, 0]


class TestPredictionPipeline:

    @pytest.mark.asyncio
    async def test_worked_example(self, stub_backend, model_handle, metrics):
        pipeline = PredictionPipeline(stub_backend, metrics=metrics)
        request = parse_request({"points": [[0, 0], [10, 10]], "threshold": 0.3})

        result = await pipeline.predict(request, model_handle)

        assert result.n == 2
        assert result.probs == [0.1, 0.9]
        assert result.classes == [0, 1]
        assert result.threshold == 0.3

    @pytest.mark.asyncio
    async def test_length_and_order_preserved(self):
        graph = StubGraph(fn=lambda x: (x[:, 0] / 100.0).reshape(-1, 1))
        handle = make_handle(graph)
        points = [[i, -i] for i in range(37)]
        result = await PredictionPipeline(StubBackend(graph=graph)).predict(
            PredictionRequest(points=tuple(map(tuple, points))), handle
        )

        assert len(result.probs) == len(result.classes) == 37
        assert result.probs == pytest.approx([i / 100.0 for i in range(37)])
        assert graph.seen[0].shape == (37, 2)
        assert graph.seen[0].dtype == np.float32
        assert graph.seen[0][:, 0].tolist() == list(range(37))

    @pytest.mark.asyncio
    @pytest.mark.parametrize("threshold", [0.0, 0.1, 0.25, 0.5, 0.9, 1.0])
    async def test_classes_follow_threshold(self, stub_backend, model_handle, threshold):
        request = PredictionRequest(points=((0, 0), (10, 10), (3, 3)), threshold=threshold)
        result = await PredictionPipeline(stub_backend).predict(request, model_handle)
        assert result.classes == [int(p >= threshold) for p in result.probs]

    @pytest.mark.asyncio
    async def test_flat_output_is_used_directly(self):
        graph = StubGraph(fn=lambda x: np.full(len(x), 0.75))
        handle = make_handle(graph)
        result = await PredictionPipeline(StubBackend(graph=graph)).predict(
            PredictionRequest(points=((1, 1), (2, 2))), handle
        )
        assert result.probs == [0.75, 0.75]
        assert result.classes == [1, 1]

    @pytest.mark.asyncio
    async def test_first_output_wins(self):
        graph = StubGraph(fn=lambda x: [np.full((len(x), 1), 0.2), np.full((len(x), 1), 0.8)])
        handle = make_handle(graph)
        backend = StubBackend(graph=graph)
        result = await PredictionPipeline(backend).predict(PredictionRequest(points=((1, 1),)), handle)
        assert result.probs == [0.2]
        assert backend.live_tensors == 0

    @pytest.mark.asyncio
    async def test_execution_failure_is_opaque_and_releases_tensors(self, metrics):
        def explode(_):
            raise RuntimeError("kernel 0x7f00 crashed")

        graph = StubGraph(fn=explode)
        handle = make_handle(graph)
        backend = StubBackend(graph=graph)

        with pytest.raises(InternalPredictError) as exc_info:
            await PredictionPipeline(backend, metrics=metrics).predict(
                PredictionRequest(points=((1, 1),)), handle
            )

        assert exc_info.value.to_response() == {"error": "Internal prediction error"}
        assert "0x7f00" not in exc_info.value.public_message
        assert backend.live_tensors == 0
        assert 'outcome="error"' in metrics.get_metrics()

    @pytest.mark.asyncio
    async def test_bad_output_shape_releases_every_output(self):
        graph = StubGraph(fn=lambda x: [np.zeros((len(x), 3)), np.zeros(len(x))])
        handle = make_handle(graph)
        backend = StubBackend(graph=graph)

        with pytest.raises(InternalPredictError):
            await PredictionPipeline(backend).predict(PredictionRequest(points=((1, 1),)), handle)

        assert backend.ledger.allocated == 3
        assert backend.live_tensors == 0

    @pytest.mark.asyncio
    async def test_repeated_calls_do_not_grow_live_tensors(self, stub_backend, model_handle, metrics):
        pipeline = PredictionPipeline(stub_backend, metrics=metrics)
        request = PredictionRequest(points=((0.0, 0.0), (10.0, 10.0)))

        for _ in range(10_000):
            await pipeline.predict(request, model_handle)
            assert stub_backend.live_tensors == 0

        assert stub_backend.ledger.allocated == 20_000
        assert "ml_live_tensors 0.0" in metrics.get_metrics()
