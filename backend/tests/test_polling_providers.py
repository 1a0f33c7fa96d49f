"""
Test the job-polling providers (Replicate, Luma, Gaussian Splatting)

Tests for:
- Request shape (endpoints, auth headers, model versions, inputs)
- Polling: fixed interval, immediate abort on failure, timeout after max attempts
- HTTP / network / JSON error mapping
- Output mapping into the canonical model
"""
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from conftest import make_config, mock_response, mock_session
from gateway.errors import (
    ProviderConnectionError,
    ProviderHTTPError,
    ProviderJobFailedError,
    ProviderResponseError,
    ProviderTimeoutError,
    UnsupportedInputError,
)
from gateway.schemas import BodyScanOptions, ClothingGenOptions, ProviderName as P
from providers.base import JOB_PENDING, JOB_SUCCEEDED, JobState
from providers.gaussian_splatting import (
    SPLAT_TO_MESH_MODEL,
    VIDEO_TO_SPLAT_MODEL,
    GaussianSplattingClient,
    parse_splat_output,
)
from providers.luma import LumaClient
from providers.replicate import REMOVE_BG_MODEL, ReplicateClient, first_url

REPLICATE_URL = "https://api.replicate.com/v1"
LUMA_URL = "https://webapp.engineeringlumalabs.com/api/v3"


def replicate_client(session, model="camenduru/triposr:3f5a3e0e"):
    config = make_config(P.REPLICATE, 2, endpoint=REPLICATE_URL)
    config = config.model_copy(update={"model": model})
    return ReplicateClient(config, session=session)


def sent(session, index):
    """(method, url, kwargs) of the index-th HTTP call"""
    call = session.request.call_args_list[index]
    return call.args[0], call.args[1], call.kwargs


class TestPollJob:

    @pytest.mark.asyncio
    async def test_returns_output_on_success(self):
        client = replicate_client(MagicMock())
        fetch = AsyncMock(side_effect=[{"status": "starting"}, {"status": "succeeded", "output": "u"}])
        with patch("asyncio.sleep", new_callable=AsyncMock) as sleep:
            output = await client.poll_job("p1", fetch, client.interpret, 5.0, 60)
        assert output == "u"
        sleep.assert_awaited_once_with(5.0)

    @pytest.mark.asyncio
    async def test_failure_aborts_immediately(self):
        client = replicate_client(MagicMock())
        fetch = AsyncMock(return_value={"status": "failed", "error": "CUDA out of memory"})
        with patch("asyncio.sleep", new_callable=AsyncMock) as sleep:
            with pytest.raises(ProviderJobFailedError) as exc_info:
                await client.poll_job("p1", fetch, client.interpret, 5.0, 60)
        assert fetch.await_count == 1
        sleep.assert_not_called()
        assert exc_info.value.reason == "CUDA out of memory"

    @pytest.mark.asyncio
    async def test_canceled_is_terminal_failure(self):
        client = replicate_client(MagicMock())
        fetch = AsyncMock(return_value={"status": "canceled"})
        with patch("asyncio.sleep", new_callable=AsyncMock):
            with pytest.raises(ProviderJobFailedError):
                await client.poll_job("p1", fetch, client.interpret, 5.0, 60)

    @pytest.mark.asyncio
    async def test_timeout_after_max_attempts(self):
        client = replicate_client(MagicMock())
        fetch = AsyncMock(return_value={"status": "processing"})
        with patch("asyncio.sleep", new_callable=AsyncMock) as sleep:
            with pytest.raises(ProviderTimeoutError) as exc_info:
                await client.poll_job("p1", fetch, client.interpret, 5.0, 60)
        assert fetch.await_count == 60
        assert sleep.await_count == 59
        assert all(call.args == (5.0,) for call in sleep.await_args_list)
        assert exc_info.value.attempts == 60

    @pytest.mark.asyncio
    async def test_unknown_status_is_response_error(self):
        client = replicate_client(MagicMock())
        fetch = AsyncMock(return_value={"status": "exploded"})
        with pytest.raises(ProviderResponseError):
            await client.poll_job("p1", fetch, client.interpret, 5.0, 60)

    def test_job_state_terminal(self):
        assert JobState(JOB_SUCCEEDED).is_terminal
        assert not JobState(JOB_PENDING).is_terminal


class TestReplicateClient:

    @pytest.mark.asyncio
    async def test_body_model_pipeline(self, image):
        session = mock_session(
            mock_response(201, {"id": "bg1", "status": "starting"}),
            mock_response(200, {"status": "succeeded", "output": "https://cdn.replicate/clean.png"}),
            mock_response(201, {"id": "p2", "status": "starting"}),
            mock_response(200, {"status": "processing"}),
            mock_response(200, {"status": "succeeded", "output": ["https://cdn.replicate/body.glb"]}),
        )
        client = replicate_client(session)

        with patch("asyncio.sleep", new_callable=AsyncMock) as sleep:
            model = await client.generate_body_model([image], BodyScanOptions(quality="low"))

        assert model.provider == "replicate"
        assert model.download_url == "https://cdn.replicate/body.glb"
        assert model.source_format == "glb"
        assert model.vertex_count == 0
        sleep.assert_awaited_once_with(5.0)

        method, url, kwargs = sent(session, 0)
        assert (method, url) == ("POST", f"{REPLICATE_URL}/predictions")
        assert kwargs["json"]["version"] == REMOVE_BG_MODEL.split(":")[1]
        assert kwargs["json"]["input"]["image"].startswith("data:image/png;base64,")
        assert kwargs["headers"]["Authorization"] == "Token replicate-test-key"

        method, url, _ = sent(session, 1)
        assert (method, url) == ("GET", f"{REPLICATE_URL}/predictions/bg1")

        _, _, kwargs = sent(session, 2)
        assert kwargs["json"]["version"] == "3f5a3e0e"
        assert kwargs["json"]["input"] == {
            "image": "https://cdn.replicate/clean.png",
            "foreground_ratio": 0.85,
            "mc_resolution": 128,
        }

    @pytest.mark.asyncio
    async def test_clothing_model_inputs(self, image):
        session = mock_session(
            mock_response(201, {"id": "bg1"}),
            mock_response(200, {"status": "succeeded", "output": "https://cdn.replicate/clean.png"}),
            mock_response(201, {"id": "p2"}),
            mock_response(200, {"status": "succeeded", "output": "https://cdn.replicate/shirt.glb"}),
        )
        client = replicate_client(session)

        model = await client.generate_clothing_model(image, ClothingGenOptions(category="tops"))

        assert model.category == "tops"
        assert model.materials == []
        _, _, kwargs = sent(session, 2)
        assert kwargs["json"]["input"]["foreground_ratio"] == 0.9
        assert kwargs["json"]["input"]["mc_resolution"] == 192

    @pytest.mark.asyncio
    async def test_unversioned_model_uses_model_endpoint(self, image):
        session = mock_session(
            mock_response(201, {"id": "p1"}),
            mock_response(200, {"status": "succeeded", "output": "https://x/o.glb"}),
        )
        client = replicate_client(session, model="stability-ai/triposr")

        await client.run_prediction("stability-ai/triposr", {"image": "x"})

        _, url, kwargs = sent(session, 0)
        assert url == f"{REPLICATE_URL}/models/stability-ai/triposr/predictions"
        assert "version" not in kwargs["json"]

    @pytest.mark.asyncio
    async def test_http_error_on_create(self, image):
        session = mock_session(mock_response(402, text="Payment Required"))
        client = replicate_client(session)

        with pytest.raises(ProviderHTTPError) as exc_info:
            await client.generate_body_model([image], BodyScanOptions())
        assert exc_info.value.status_code == 402
        assert exc_info.value.provider == "replicate"

    @pytest.mark.asyncio
    async def test_http_error_while_polling(self, image):
        session = mock_session(
            mock_response(201, {"id": "bg1"}),
            mock_response(500, text="internal"),
        )
        client = replicate_client(session)

        with pytest.raises(ProviderHTTPError):
            await client.generate_body_model([image], BodyScanOptions())

    @pytest.mark.asyncio
    async def test_network_error(self, image):
        session = mock_session(httpx.ConnectError("connection refused"))
        client = replicate_client(session)

        with pytest.raises(ProviderConnectionError):
            await client.generate_body_model([image], BodyScanOptions())

    @pytest.mark.asyncio
    async def test_request_timeout(self, image):
        session = mock_session(httpx.ReadTimeout("slow"))
        client = replicate_client(session)

        with pytest.raises(ProviderConnectionError) as exc_info:
            await client.generate_body_model([image], BodyScanOptions())
        assert "timed out" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_non_json_response(self, image):
        session = mock_session(mock_response(200, ValueError("no json"), text="<html>"))
        client = replicate_client(session)

        with pytest.raises(ProviderResponseError):
            await client.generate_body_model([image], BodyScanOptions())

    @pytest.mark.asyncio
    async def test_missing_prediction_id(self, image):
        session = mock_session(mock_response(201, {"status": "starting"}))
        client = replicate_client(session)

        with pytest.raises(ProviderResponseError):
            await client.generate_body_model([image], BodyScanOptions())

    @pytest.mark.asyncio
    async def test_video_only_request_unsupported(self, video):
        client = replicate_client(MagicMock())
        with pytest.raises(UnsupportedInputError):
            await client.generate_body_model([], BodyScanOptions(), video)

    @pytest.mark.asyncio
    async def test_health_check(self):
        session = mock_session(mock_response(200, {"results": []}))
        client = replicate_client(session)

        await client.health_check()

        method, url, kwargs = sent(session, 0)
        assert (method, url) == ("GET", f"{REPLICATE_URL}/models")
        assert kwargs["headers"]["Authorization"].startswith("Token ")

    @pytest.mark.asyncio
    async def test_health_check_failure(self):
        client = replicate_client(mock_session(mock_response(401, text="Unauthenticated")))
        with pytest.raises(ProviderHTTPError):
            await client.health_check()

    def test_first_url(self):
        assert first_url("https://a") == "https://a"
        assert first_url(["", "https://b"]) == "https://b"
        assert first_url([]) is None
        assert first_url({"x": 1}) is None


class TestLumaClient:

    def make_client(self, session):
        return LumaClient(make_config(P.LUMA, 4, endpoint=LUMA_URL), session=session)

    @pytest.mark.asyncio
    async def test_body_capture_from_images(self, image):
        session = mock_session(
            mock_response(200, {"id": "cap_1", "status": "pending"}),
            mock_response(200, {"id": "cap_1", "status": "processing"}),
            mock_response(200, {
                "id": "cap_1",
                "status": "completed",
                "downloadUrl": "https://luma/cap_1.glb",
                "previewUrl": "https://luma/cap_1.jpg",
            }),
        )
        client = self.make_client(session)

        with patch("asyncio.sleep", new_callable=AsyncMock) as sleep:
            model = await client.generate_body_model([image, image], BodyScanOptions(quality="high"))

        assert model.id == "cap_1"
        assert model.download_url == "https://luma/cap_1.glb"
        assert model.preview_url == "https://luma/cap_1.jpg"
        sleep.assert_awaited_once_with(10.0)

        method, url, kwargs = sent(session, 0)
        assert (method, url) == ("POST", f"{LUMA_URL}/captures")
        assert kwargs["headers"]["Authorization"] == "luma-api-key=luma-test-key"
        body = kwargs["json"]
        assert body["input"]["type"] == "images"
        assert len(body["input"]["urls"]) == 2
        assert body["output"] == {"type": "mesh", "quality": "high", "texture_resolution": 4096}

        method, url, _ = sent(session, 1)
        assert (method, url) == ("GET", f"{LUMA_URL}/captures/cap_1")

    @pytest.mark.asyncio
    async def test_body_capture_from_video(self, video):
        session = mock_session(
            mock_response(200, {"id": "cap_2"}),
            mock_response(200, {"status": "completed", "downloadUrl": "https://luma/cap_2.ply"}),
        )
        client = self.make_client(session)

        model = await client.generate_body_model([], BodyScanOptions(quality="low"), video)

        body = sent(session, 0)[2]["json"]
        assert body["input"]["type"] == "video"
        assert body["input"]["url"].startswith("data:video/mp4;base64,")
        assert body["output"]["quality"] == "draft"
        assert body["output"]["texture_resolution"] == 2048
        assert model.source_format == "ply"

    @pytest.mark.asyncio
    async def test_clothing_capture(self, image):
        session = mock_session(
            mock_response(200, {"id": "cap_3"}),
            mock_response(200, {"status": "completed", "downloadUrl": "https://luma/shoe.glb"}),
        )
        client = self.make_client(session)

        model = await client.generate_clothing_model(image, ClothingGenOptions(category="shoes"))

        body = sent(session, 0)[2]["json"]
        assert body["title"].startswith("clothing_shoes_")
        assert body["output"]["quality"] == "standard"
        assert model.category == "shoes"

    @pytest.mark.asyncio
    async def test_capture_failed(self, image):
        session = mock_session(
            mock_response(200, {"id": "cap_4"}),
            mock_response(200, {"status": "failed"}),
        )
        client = self.make_client(session)

        with pytest.raises(ProviderJobFailedError):
            await client.generate_body_model([image], BodyScanOptions())

    @pytest.mark.asyncio
    async def test_capture_timeout(self, image):
        session = mock_session()
        session.request.side_effect = (
            [mock_response(200, {"id": "cap_5"})]
            + [mock_response(200, {"status": "processing"}) for _ in range(60)]
        )
        client = self.make_client(session)

        with patch("asyncio.sleep", new_callable=AsyncMock) as sleep:
            with pytest.raises(ProviderTimeoutError):
                await client.generate_body_model([image], BodyScanOptions())

        assert session.request.call_count == 61
        assert sleep.await_count == 59

    @pytest.mark.asyncio
    async def test_completed_without_download_url(self, image):
        session = mock_session(
            mock_response(200, {"id": "cap_6"}),
            mock_response(200, {"status": "completed"}),
        )
        client = self.make_client(session)

        with pytest.raises(ProviderResponseError):
            await client.generate_body_model([image], BodyScanOptions())

    @pytest.mark.asyncio
    async def test_health_check_lists_captures(self):
        session = mock_session(mock_response(200, []))
        client = self.make_client(session)

        await client.health_check()

        assert sent(session, 0)[1] == f"{LUMA_URL}/captures"


class TestGaussianSplattingClient:

    def make_client(self, session):
        config = make_config(P.GAUSSIAN_SPLATTING, 5, endpoint=REPLICATE_URL)
        config = config.model_copy(update={"model": "camenduru/gaussian-splatting:latest"})
        return GaussianSplattingClient(config, session=session)

    @pytest.mark.asyncio
    async def test_images_to_splat_then_mesh(self, image):
        session = mock_session(
            mock_response(201, {"id": "gs1"}),
            mock_response(200, {"status": "succeeded", "output": {
                "splat": "https://cdn/scan.splat", "preview": "https://cdn/scan.png",
            }}),
            mock_response(201, {"id": "mesh1"}),
            mock_response(200, {"status": "succeeded", "output": "https://cdn/scan.glb"}),
        )
        client = self.make_client(session)

        model = await client.generate_body_model([image, image, image], BodyScanOptions())

        assert model.download_url == "https://cdn/scan.glb"
        assert model.preview_url == "https://cdn/scan.png"
        assert model.source_format == "glb"

        splat_input = sent(session, 0)[2]["json"]
        assert splat_input["version"] == "latest"
        assert len(splat_input["input"]["images"]) == 3
        assert splat_input["input"]["num_iterations"] == 7000

        mesh_input = sent(session, 2)[2]["json"]
        assert mesh_input["version"] == SPLAT_TO_MESH_MODEL.split(":")[1]
        assert mesh_input["input"]["splat_file"] == "https://cdn/scan.splat"
        assert mesh_input["input"]["target_faces"] == 50000

    @pytest.mark.asyncio
    async def test_video_with_mesh_output_skips_conversion(self, video):
        session = mock_session(
            mock_response(201, {"id": "gs2"}),
            mock_response(200, {"status": "succeeded", "output": {
                "ply": "https://cdn/orbit.ply", "mesh": "https://cdn/orbit.obj",
            }}),
        )
        client = self.make_client(session)

        model = await client.generate_body_model([], BodyScanOptions(), video)

        assert session.request.call_count == 2
        assert model.download_url == "https://cdn/orbit.obj"
        assert model.source_format == "obj"
        video_input = sent(session, 0)[2]["json"]["input"]
        assert video_input["extract_frames"] is True
        assert video_input["frame_interval"] == 5
        assert sent(session, 0)[2]["json"]["version"] == VIDEO_TO_SPLAT_MODEL.split(":")[1]

    @pytest.mark.asyncio
    async def test_failed_conversion_keeps_splat(self, image):
        session = mock_session(
            mock_response(201, {"id": "gs3"}),
            mock_response(200, {"status": "succeeded", "output": ["https://cdn/item.ply"]}),
            mock_response(201, {"id": "mesh3"}),
            mock_response(200, {"status": "failed", "error": "no surface"}),
        )
        client = self.make_client(session)

        model = await client.generate_clothing_model(image, ClothingGenOptions(category="accessories"))

        assert model.download_url == "https://cdn/item.ply"
        assert model.source_format == "ply"
        assert model.category == "accessories"

    @pytest.mark.asyncio
    async def test_polls_every_ten_seconds(self, image):
        client = self.make_client(mock_session())
        client.convert_to_mesh = False
        client.session.request.side_effect = [
            mock_response(201, {"id": "gs4"}),
            mock_response(200, {"status": "processing"}),
            mock_response(200, {"status": "succeeded", "output": {"splat": "https://cdn/a.splat"}}),
        ]

        with patch("asyncio.sleep", new_callable=AsyncMock) as sleep:
            await client.generate_body_model([image], BodyScanOptions())

        sleep.assert_awaited_once_with(10.0)
        assert client.max_poll_attempts == 180

    @pytest.mark.asyncio
    async def test_output_without_urls(self, image):
        session = mock_session(
            mock_response(201, {"id": "gs5"}),
            mock_response(200, {"status": "succeeded", "output": {}}),
        )
        client = self.make_client(session)

        with pytest.raises(ProviderResponseError):
            await client.generate_body_model([image], BodyScanOptions())

    def test_parse_splat_output_list(self):
        assert parse_splat_output(["https://a.splat"])["splat"] == "https://a.splat"
