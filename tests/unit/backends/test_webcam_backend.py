"""Unit tests for webcam selection and the OpenCV-backed backend."""

import time
from datetime import datetime, timedelta, timezone

import cv2
import numpy as np
import pytest

from labops.backends.webcam import (
    SelectionRule,
    WebcamBackend,
    WebcamDeviceInfo,
    enumerate_webcam_devices,
    parse_webcam_selector,
    resolve_webcam_selector,
)
from labops.backends.webcam import backend as webcam_backend_module
from labops.backends.webcam.backend import PlatformAvailability, decode_fourcc, encode_fourcc
from labops.backends.webcam.device_selector import parse_webcam_fixture, probe_opencv_devices
from labops.core.errors import BackendError, BackendNotAvailableError, SelectorError
from labops.core.time_utils import CaptureClock


class FakeCapture:
    """Minimal cv2.VideoCapture stand-in."""

    def __init__(self, overrides=None, reject=(), frame_shape=(4, 4, 3)):
        self.props = {}
        self.overrides = overrides or {}
        self.reject = set(reject)
        self.frame_shape = frame_shape
        self.released = False

    def isOpened(self):
        return not self.released

    def set(self, prop, value):
        if prop in self.reject:
            return False
        self.props[prop] = value
        return True

    def get(self, prop):
        if prop in self.overrides:
            return self.overrides[prop]
        return self.props.get(prop, 0.0)

    def read(self):
        time.sleep(0.002)
        return True, np.zeros(self.frame_shape, dtype=np.uint8)

    def release(self):
        self.released = True


@pytest.fixture
def linux_platform(monkeypatch):
    monkeypatch.setattr(
        webcam_backend_module,
        "probe_platform",
        lambda: PlatformAvailability("linux", True, "linux V4L2 via OpenCV"),
    )


DEVICES = [
    WebcamDeviceInfo("usb-cam-b", "Logitech Brio", "usb:2", 1),
    WebcamDeviceInfo("usb-cam-a", "Integrated Camera", "usb:1", 0),
]


class TestWebcamSelector:

    def test_parse(self):
        selector = parse_webcam_selector("name_contains:brio")
        assert selector.name_contains == "brio"
        assert selector.to_text() == "name_contains:brio"

    def test_parse_rejects_unknown_key(self):
        with pytest.raises(SelectorError, match="allowed: id, index, name_contains"):
            parse_webcam_selector("serial:1")

    def test_resolution_uses_sorted_order(self):
        by_index = resolve_webcam_selector(DEVICES, parse_webcam_selector("index:0"))
        assert by_index.device.device_id == "usb-cam-a"
        by_name = resolve_webcam_selector(DEVICES, parse_webcam_selector("name_contains:BRIO"))
        assert by_name.index == 1
        assert by_name.rule is SelectionRule.NAME_CONTAINS

    def test_resolution_errors(self):
        with pytest.raises(SelectorError, match="no webcam devices were discovered"):
            resolve_webcam_selector([], parse_webcam_selector("index:0"))
        with pytest.raises(SelectorError, match="out of range for 2 discovered"):
            resolve_webcam_selector(DEVICES, parse_webcam_selector("index:5"))
        with pytest.raises(SelectorError, match="no webcam device matched selector id:nope"):
            resolve_webcam_selector(DEVICES, parse_webcam_selector("id:nope"))


class TestWebcamDiscovery:

    def test_fixture_parsing(self):
        devices = parse_webcam_fixture("device_id,friendly_name,bus_info,capture_index\ncam0,Cam Zero,,0\n")
        assert devices == [WebcamDeviceInfo("cam0", "Cam Zero", None, 0)]

    def test_fixture_bad_index(self):
        with pytest.raises(BackendError, match="capture_index must be a non-negative integer"):
            parse_webcam_fixture("cam0,Cam,usb,x\n")

    def test_enumerate_from_fixture_env(self, tmp_path, monkeypatch):
        path = tmp_path / "webcams.csv"
        path.write_text("cam1,Second,,1\ncam0,First,,0\n", encoding="utf-8")
        monkeypatch.setenv("LABOPS_WEBCAM_DEVICE_FIXTURE", str(path))
        assert [d.device_id for d in enumerate_webcam_devices()] == ["cam0", "cam1"]

    def test_missing_fixture_file(self, tmp_path, monkeypatch):
        monkeypatch.setenv("LABOPS_WEBCAM_DEVICE_FIXTURE", str(tmp_path / "absent.csv"))
        with pytest.raises(BackendError, match="unable to open LABOPS_WEBCAM_DEVICE_FIXTURE"):
            enumerate_webcam_devices()

    def test_probe_with_opener(self):
        opened = {1: FakeCapture()}
        devices = probe_opencv_devices(2, opener=opened.get)
        assert [d.capture_index for d in devices] == [1]
        assert devices[0].device_id == "opencv-index-1"
        assert opened[1].released


class TestWebcamBackend:

    def test_fourcc_roundtrip(self):
        assert decode_fourcc(float(encode_fourcc("MJPG"))) == "MJPG"

    def test_connect_and_readback(self, linux_platform):
        capture = FakeCapture(overrides={cv2.CAP_PROP_FPS: 25.0})
        backend = WebcamBackend(capture_factory=lambda index: capture)
        backend.set_param("webcam.requested_width", "1280")
        backend.set_param("webcam.requested_fps", "30")
        backend.connect()

        rows = {row.generic_key: row for row in backend.readback_rows}
        assert rows["width"].applied and not rows["width"].adjusted
        assert rows["fps"].adjusted
        assert rows["fps"].actual_value == "25.000000"

        config = backend.dump_config()
        assert config["webcam.adjusted.count"] == "1"
        assert config["webcam.adjusted.0.key"] == "webcam.requested_fps"
        assert config["webcam.actual_width"] == "1280.000000"
        assert config["device.opened_index"] == "0"

    def test_rejected_property_is_unsupported(self, linux_platform):
        capture = FakeCapture(reject={cv2.CAP_PROP_FOURCC})
        backend = WebcamBackend(capture_factory=lambda index: capture)
        backend.set_param("webcam.requested_pixel_format", "yuyv")
        backend.connect()
        config = backend.dump_config()
        assert config["webcam.unsupported.count"] == "1"
        assert config["webcam.unsupported.0.requested"] == "YUYV"
        assert "OpenCV rejected pixel format request 'YUYV'" in config["webcam.unsupported.0.reason"]

    def test_open_failure(self, linux_platform):
        backend = WebcamBackend(capture_factory=lambda index: None)
        with pytest.raises(BackendError, match="could not open webcam index 0"):
            backend.connect()

    def test_unavailable_platform(self, monkeypatch):
        monkeypatch.setattr(
            webcam_backend_module,
            "probe_platform",
            lambda: PlatformAvailability("plan9", False, "unsupported operating system"),
        )
        with pytest.raises(BackendNotAvailableError, match="BACKEND_NOT_AVAILABLE"):
            WebcamBackend(capture_factory=lambda index: FakeCapture()).connect()

    @pytest.mark.parametrize("key,value", [
        ("webcam.requested_width", "0"),
        ("webcam.requested_fps", "fast"),
        ("webcam.requested_pixel_format", "MJPEG"),
        ("device.index", "-1"),
    ])
    def test_invalid_params(self, key, value):
        with pytest.raises(BackendError):
            WebcamBackend().set_param(key, value)

    def test_pull_frames_and_stop(self, linux_platform):
        capture = FakeCapture()
        backend = WebcamBackend(capture_factory=lambda index: capture)
        backend.connect()
        backend.start()
        frames = backend.pull_frames(30)
        assert frames
        assert frames[0].size_bytes == 4 * 4 * 3
        assert [f.frame_id for f in frames] == list(range(len(frames)))
        backend.stop()
        assert capture.released
        assert backend.dump_config()["connected"] == "false"

    def test_timestamps_follow_capture_clock(self, linux_platform):
        start = datetime(2026, 1, 15, 12, 0, 0, tzinfo=timezone.utc)
        clock = CaptureClock.anchored(start, time.monotonic_ns())
        backend = WebcamBackend(capture_factory=lambda index: FakeCapture(), clock=clock)
        backend.connect()
        backend.start()
        frames = backend.pull_frames(30)
        backend.stop()
        stamps = [f.timestamp for f in frames]
        assert stamps == sorted(stamps)
        assert all(start <= ts < start + timedelta(seconds=5) for ts in stamps)

    @pytest.mark.hardware
    def test_real_webcam_opens(self):
        backend = WebcamBackend()
        backend.connect()
        backend.start()
        try:
            assert backend.pull_frames(500)
        finally:
            backend.stop()
