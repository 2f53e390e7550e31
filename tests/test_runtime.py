"""Tests for the JSON request boundary."""

from __future__ import annotations

from io import BytesIO
import json
import logging
from pathlib import Path
from unittest.mock import patch

import numpy as np
import pytest

from birefnet_service import model_loader, runtime
from birefnet_service.config import Settings
from birefnet_service.errors import (
    InvalidModelFile,
    InvalidRequest,
    MissingAction,
    MissingArgument,
    MissingModelFile,
)

from conftest import FailingEngine, StubEngine, decode_png, gradient_rgba


def _request(action: object, **arguments: object) -> bytes:
    return json.dumps({"action": action, "arguments": arguments}).encode("utf-8")


@pytest.fixture()
def zero_engine() -> StubEngine:
    return StubEngine(np.zeros((1, 1, 16, 16), dtype=np.float32))


# ---------------------------------------------------------------------------
# Argument and model validation
# ---------------------------------------------------------------------------


class TestRequireString:
    def test_returns_value(self) -> None:
        assert runtime.require_string({"imagePath": "/a.png"}, "imagePath") == "/a.png"

    @pytest.mark.parametrize("arguments", [{}, {"imagePath": ""}, {"imagePath": 3}, {"imagePath": None}])
    def test_missing_or_empty(self, arguments) -> None:
        with pytest.raises(MissingArgument) as excinfo:
            runtime.require_string(arguments, "imagePath")
        assert str(excinfo.value) == "Missing argument: imagePath."
        assert excinfo.value.key == "imagePath"


class TestValidateModelFile:
    def test_missing_file(self, tmp_path: Path, settings: Settings) -> None:
        with pytest.raises(MissingModelFile):
            runtime.validate_model_file(str(tmp_path / "absent.onnx"), settings)

    def test_small_file_is_invalid(self, model_file: Path, settings: Settings) -> None:
        with pytest.raises(InvalidModelFile):
            runtime.validate_model_file(str(model_file), settings)

    def test_file_at_threshold_is_invalid(self, tmp_path: Path) -> None:
        settings = Settings(model_size_threshold_bytes=1024)
        path = tmp_path / "exact.onnx"
        path.write_bytes(b"\0" * 1024)
        with pytest.raises(InvalidModelFile):
            runtime.validate_model_file(str(path), settings)

    def test_file_above_default_threshold_is_valid(self, tmp_path: Path, settings: Settings) -> None:
        path = tmp_path / "large.onnx"
        with open(path, "wb") as handle:
            handle.truncate(256 * 1024 * 1024 + 1)
        runtime.validate_model_file(str(path), settings)


# ---------------------------------------------------------------------------
# handle()
# ---------------------------------------------------------------------------


class TestHandle:
    def test_status(self, settings: Settings) -> None:
        assert runtime.handle("status", {}, settings=settings) == {"ready": True}

    @pytest.mark.parametrize("action", [None, ""])
    def test_missing_action(self, action, settings: Settings) -> None:
        with pytest.raises(MissingAction):
            runtime.handle(action, {}, settings=settings)

    def test_unknown_action(self, settings: Settings) -> None:
        with pytest.raises(InvalidRequest):
            runtime.handle("transcribe", {}, settings=settings)

    def test_validate_runtime(self, tmp_path: Path) -> None:
        settings = Settings(model_size_threshold_bytes=8)
        path = tmp_path / "model.onnx"
        path.write_bytes(b"0123456789")
        assert runtime.handle("validateRuntime", {"modelPath": str(path)}, settings=settings) == {
            "validated": True
        }

    def test_validate_runtime_with_warmup(self, tmp_path: Path, zero_engine: StubEngine) -> None:
        settings = Settings(
            model_size_threshold_bytes=8,
            validate_warmup=True,
            model_width=16,
            model_height=16,
            warmup_size=8,
        )
        path = tmp_path / "model.onnx"
        path.write_bytes(b"0123456789")
        runtime.handle("validateRuntime", {"modelPath": str(path)}, settings=settings, engine=zero_engine)
        assert zero_engine.calls[0].shape == (1, 3, 16, 16)

    def test_validate_runtime_requires_model_path(self, settings: Settings) -> None:
        with pytest.raises(MissingArgument):
            runtime.handle("validateRuntime", {}, settings=settings)

    def test_remove_background_writes_png(
        self, tmp_path: Path, small_settings: Settings, write_image, model_file: Path, zero_engine: StubEngine
    ) -> None:
        image = write_image(gradient_rgba(6, 4))
        output = tmp_path / "out" / "cutout.png"

        payload = runtime.handle(
            "removeBackground",
            {"imagePath": str(image), "modelPath": str(model_file), "outputPath": str(output)},
            settings=small_settings,
            engine=zero_engine,
        )

        assert payload["outputPath"] == str(output.resolve())
        assert payload["bytes"] == output.stat().st_size
        decoded, mode = decode_png(output.read_bytes())
        assert mode == "RGBA"
        assert decoded.shape == (4, 6, 4)
        assert not list(output.parent.glob("*.tmp"))

    @pytest.mark.parametrize("missing", ["imagePath", "modelPath", "outputPath"])
    def test_remove_background_requires_all_arguments(
        self, missing: str, small_settings: Settings, zero_engine: StubEngine
    ) -> None:
        arguments = {"imagePath": "/in.png", "modelPath": "/model.onnx", "outputPath": "/out.png"}
        arguments[missing] = ""
        with pytest.raises(MissingArgument) as excinfo:
            runtime.handle("removeBackground", arguments, settings=small_settings, engine=zero_engine)
        assert excinfo.value.key == missing

    def test_remove_background_requires_model_file(
        self, tmp_path: Path, small_settings: Settings, write_image, zero_engine: StubEngine
    ) -> None:
        with pytest.raises(MissingModelFile):
            runtime.handle(
                "removeBackground",
                {
                    "imagePath": str(write_image(gradient_rgba(4, 4))),
                    "modelPath": str(tmp_path / "absent.onnx"),
                    "outputPath": str(tmp_path / "out.png"),
                },
                settings=small_settings,
                engine=zero_engine,
            )
        assert zero_engine.calls == []

    def test_cached_engine_is_released_after_request(
        self, tmp_path: Path, small_settings: Settings, write_image, model_file: Path, zero_engine: StubEngine
    ) -> None:
        with patch.object(model_loader, "_load_engine", return_value=zero_engine) as loader, patch.object(
            model_loader, "reset_engine", wraps=model_loader.reset_engine
        ) as reset:
            runtime.handle(
                "removeBackground",
                {
                    "imagePath": str(write_image(gradient_rgba(4, 4))),
                    "modelPath": str(model_file),
                    "outputPath": str(tmp_path / "out.png"),
                },
                settings=small_settings,
            )
        loader.assert_called_once()
        reset.assert_called_once()
        assert model_loader._ENGINE is None


# ---------------------------------------------------------------------------
# process() / main()
# ---------------------------------------------------------------------------


class TestProcess:
    def test_success_envelope(self, settings: Settings) -> None:
        response = runtime.process(_request("status"), settings=settings)
        assert response.model_dump(exclude_none=True) == {"ok": True, "payload": {"ready": True}}

    def test_without_json_rpc_flag(self, settings: Settings) -> None:
        response = runtime.process(_request("status"), json_rpc=False, settings=settings)
        assert response.model_dump(exclude_none=True) == {"ok": False, "error": "Invalid JSON-RPC request."}

    @pytest.mark.parametrize("data", [b"", b"   ", b"{not json", b"[1, 2]", b'"status"'])
    def test_malformed_input(self, data: bytes, settings: Settings) -> None:
        response = runtime.process(data, settings=settings)
        assert response.ok is False
        assert response.error == "Invalid JSON-RPC request."

    @pytest.mark.parametrize("data", [b"{}", b'{"action": ""}', b'{"action": 5}'])
    def test_missing_action(self, data: bytes, settings: Settings) -> None:
        response = runtime.process(data, settings=settings)
        assert response.error == "Missing action in request."

    def test_non_object_arguments_treated_as_empty(self, settings: Settings) -> None:
        response = runtime.process(b'{"action": "validateRuntime", "arguments": [1]}', settings=settings)
        assert response.error == "Missing argument: modelPath."

    def test_stage_error_message_is_surfaced(
        self, tmp_path: Path, small_settings: Settings, model_file: Path, zero_engine: StubEngine
    ) -> None:
        bad = tmp_path / "bad.png"
        bad.write_bytes(b"nope")
        data = _request(
            "removeBackground",
            imagePath=str(bad),
            modelPath=str(model_file),
            outputPath=str(tmp_path / "out.png"),
        )
        response = runtime.process(data, settings=small_settings, engine=zero_engine)
        assert response.model_dump(exclude_none=True) == {
            "ok": False,
            "error": "Failed to decode image for BiRefNet processing.",
        }
        assert not (tmp_path / "out.png").exists()


class TestDispatchLogging:
    def test_expected_error_is_logged_without_traceback(
        self, settings: Settings, caplog: pytest.LogCaptureFixture
    ) -> None:
        request = runtime.RuntimeRequest(action="removeBackground", arguments={})
        with caplog.at_level(logging.ERROR, logger="birefnet_service.runtime"):
            response = runtime.dispatch(request, settings=settings)

        assert response.error == "Missing argument: imagePath."
        records = [r for r in caplog.records if r.name == "birefnet_service.runtime"]
        assert records and all(r.exc_info is None for r in records)

    def test_unexpected_error_keeps_traceback(
        self,
        small_settings: Settings,
        write_image,
        model_file: Path,
        tmp_path: Path,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        request = runtime.RuntimeRequest(
            action="removeBackground",
            arguments={
                "imagePath": str(write_image(gradient_rgba(4, 4))),
                "modelPath": str(model_file),
                "outputPath": str(tmp_path / "out.png"),
            },
        )
        engine = FailingEngine(RuntimeError("boom"))
        with caplog.at_level(logging.ERROR, logger="birefnet_service.runtime"):
            response = runtime.dispatch(request, settings=small_settings, engine=engine)

        assert response.model_dump(exclude_none=True) == {"ok": False, "error": "boom"}
        assert any(r.exc_info is not None for r in caplog.records if r.name == "birefnet_service.runtime")


class TestMain:
    def _run(self, argv, stdin: bytes) -> dict:
        stdout = BytesIO()

        class _Stream:
            def __init__(self, buffer: BytesIO) -> None:
                self.buffer = buffer

        with patch("sys.stdin", _Stream(BytesIO(stdin))), patch("sys.stdout", _Stream(stdout)):
            assert runtime.main(argv) == 0
        return json.loads(stdout.getvalue().decode("utf-8"))

    def test_status_round_trip(self) -> None:
        assert self._run(["--json-rpc"], _request("status")) == {"ok": True, "payload": {"ready": True}}

    def test_flag_required(self) -> None:
        assert self._run([], _request("status")) == {"ok": False, "error": "Invalid JSON-RPC request."}

    def test_unknown_flags_are_tolerated(self) -> None:
        assert self._run(["--json-rpc", "--verbose"], _request("status"))["ok"] is True
