"""Tests for effect ZMQ commands — list_effects, apply_effect, effect_properties,
validate_effect, effect_health/effect_stats, flush_state."""

import base64
import json

import numpy as np
import pytest

from effects.outline import Outline
from engine.frame import (
    Frame,
    decode_png,
    encode_png,
    premultiply,
    unpremultiply,
)
from engine.keyframe import Keyframe
from engine.pipeline import reset_effect_health


def _b64(image: np.ndarray) -> str:
    return base64.b64encode(encode_png(image)).decode("ascii")


def _unb64(data: str) -> np.ndarray:
    return decode_png(base64.b64decode(data))


@pytest.fixture(autouse=True)
def _clean_health():
    reset_effect_health()
    yield
    reset_effect_health()


def test_list_effects(zmq_client):
    resp = zmq_client.request({"cmd": "list_effects", "id": "l"})
    assert resp["ok"] is True
    ids = [e["id"] for e in resp["effects"]]
    assert "Outline" in ids


def test_apply_effect_red_square(zmq_client, red_square):
    effect = Outline(width=6, red=255, green=0, blue=0, alpha=255)
    resp = zmq_client.request(
        {
            "cmd": "apply_effect",
            "id": "a1",
            "frame_index": 1,
            "image": _b64(red_square),
            "chain": [effect.json_value()],
        }
    )
    assert resp["ok"] is True
    assert (resp["width"], resp["height"]) == (20, 20)
    out = _unb64(resp["image"])
    np.testing.assert_array_equal(out[8:12, 8:12], red_square[8:12, 8:12])
    np.testing.assert_array_equal(out[7, 9], [255, 0, 0, 255])
    np.testing.assert_array_equal(out[0, 0], [0, 0, 0, 0])


def test_apply_effect_matches_local_render(zmq_client, red_square):
    width = Keyframe()
    width.add_point(1, 0)
    width.add_point(30, 18)
    effect = Outline(width=width, green=255, alpha=180)
    resp = zmq_client.request(
        {
            "cmd": "apply_effect",
            "id": "a2",
            "frame_index": 20,
            "image": _b64(red_square),
            "chain": [effect.json_value()],
        }
    )
    assert resp["ok"] is True
    local = effect.get_frame(Frame(20, premultiply(red_square)), 20).get_image()
    np.testing.assert_array_equal(_unb64(resp["image"]), unpremultiply(local))


def test_apply_effect_empty_chain_is_identity(zmq_client, red_square):
    resp = zmq_client.request(
        {"cmd": "apply_effect", "id": "a3", "image": _b64(red_square)}
    )
    assert resp["ok"] is True
    np.testing.assert_array_equal(_unb64(resp["image"]), red_square)


def test_apply_effect_missing_image(zmq_client):
    resp = zmq_client.request({"cmd": "apply_effect", "id": "a4", "chain": []})
    assert resp["ok"] is False
    assert "missing image" in resp["error"]


def test_apply_effect_bad_png(zmq_client):
    resp = zmq_client.request(
        {
            "cmd": "apply_effect",
            "id": "a5",
            "image": base64.b64encode(b"definitely not a png").decode("ascii"),
        }
    )
    assert resp["ok"] is False
    assert "not a valid PNG" in resp["error"]


@pytest.mark.parametrize("frame_index", [-1, "3", 2.5])
def test_apply_effect_bad_frame_index(zmq_client, red_square, frame_index):
    resp = zmq_client.request(
        {
            "cmd": "apply_effect",
            "id": "a6",
            "frame_index": frame_index,
            "image": _b64(red_square),
        }
    )
    assert resp["ok"] is False
    assert "frame_index" in resp["error"]


def test_apply_effect_unknown_type(zmq_client, red_square):
    resp = zmq_client.request(
        {
            "cmd": "apply_effect",
            "id": "a7",
            "image": _b64(red_square),
            "chain": [{"type": "Blur"}],
        }
    )
    assert resp["ok"] is False
    assert "unknown effect" in resp["error"]


def test_apply_effect_invalid_document(zmq_client, red_square):
    resp = zmq_client.request(
        {
            "cmd": "apply_effect",
            "id": "a8",
            "image": _b64(red_square),
            "chain": [{"type": "Outline", "width": 5}],
        }
    )
    assert resp["ok"] is False
    assert "'width' must be a keyframe object" in resp["error"]


def test_apply_effect_chain_too_deep(zmq_client, red_square):
    resp = zmq_client.request(
        {
            "cmd": "apply_effect",
            "id": "a9",
            "image": _b64(red_square),
            "chain": [Outline().json_value() for _ in range(11)],
        }
    )
    assert resp["ok"] is False
    assert "Chain depth" in resp["error"]


def test_effect_properties(zmq_client):
    resp = zmq_client.request(
        {
            "cmd": "effect_properties",
            "id": "p1",
            "frame_index": 1,
            "effect": Outline(width=12).json_value(),
        }
    )
    assert resp["ok"] is True
    props = resp["properties"]
    assert props["width"]["value"] == 12.0
    assert props["width"]["max"] == 1000.0
    assert props["alpha"]["max"] == 255.0


def test_effect_properties_missing_effect(zmq_client):
    resp = zmq_client.request({"cmd": "effect_properties", "id": "p2"})
    assert resp["ok"] is False
    assert "missing effect" in resp["error"]


def test_validate_effect_ok(zmq_client):
    doc = Outline(red=200).json()
    resp = zmq_client.request({"cmd": "validate_effect", "id": "v1", "json": doc})
    assert resp["ok"] is True
    assert resp["effect"] == json.loads(doc)


def test_validate_effect_truncated(zmq_client):
    resp = zmq_client.request(
        {"cmd": "validate_effect", "id": "v2", "json": '{"type": "Outline", "wid'}
    )
    assert resp["ok"] is False
    assert "JSON is invalid" in resp["error"]


def test_validate_effect_missing_json(zmq_client):
    resp = zmq_client.request({"cmd": "validate_effect", "id": "v3"})
    assert resp["ok"] is False
    assert "missing json" in resp["error"]


def test_effect_stats_and_flush(zmq_client, red_square):
    zmq_client.request(
        {
            "cmd": "apply_effect",
            "id": "s1",
            "image": _b64(red_square),
            "chain": [Outline().json_value()],
        }
    )
    resp = zmq_client.request({"cmd": "effect_stats", "id": "s2"})
    assert resp["ok"] is True
    assert resp["stats"]["Outline"]["samples"] >= 1

    assert zmq_client.request({"cmd": "flush_state", "id": "s3"})["ok"] is True
    resp = zmq_client.request({"cmd": "effect_stats", "id": "s4"})
    assert resp["stats"] == {}


def test_effect_health(zmq_client):
    resp = zmq_client.request({"cmd": "effect_health", "id": "h1"})
    assert resp["ok"] is True
    assert resp["disabled_effects"] == []


def test_apply_effect_chain_must_be_list(zmq_client, red_square):
    resp = zmq_client.request(
        {
            "cmd": "apply_effect",
            "id": "a10",
            "image": _b64(red_square),
            "chain": Outline().json_value(),
        }
    )
    assert resp["ok"] is False
    assert "chain must be a list" in resp["error"]


def test_apply_effect_returns_straight_alpha_fill(zmq_client, red_square):
    effect = Outline(width=6, red=200, green=100, blue=50, alpha=128)
    resp = zmq_client.request(
        {
            "cmd": "apply_effect",
            "id": "a11",
            "image": _b64(red_square),
            "chain": [effect.json_value()],
        }
    )
    assert resp["ok"] is True
    out = _unb64(resp["image"])
    # 8-bit premultiplied storage loses at most one level per channel
    np.testing.assert_allclose(out[7, 9], [200, 100, 50, 128], atol=1)
    np.testing.assert_array_equal(out[8:12, 8:12], red_square[8:12, 8:12])


def test_apply_effect_keeps_translucent_subject(zmq_client):
    image = np.zeros((24, 24, 4), dtype=np.uint8)
    image[8:16, 8:16] = [200, 100, 50, 200]
    resp = zmq_client.request(
        {
            "cmd": "apply_effect",
            "id": "a12",
            "image": _b64(image),
            "chain": [Outline(width=6, blue=255).json_value()],
        }
    )
    assert resp["ok"] is True
    out = _unb64(resp["image"])
    subject = out[8:16, 8:16].astype(int)
    assert np.abs(subject - image[8:16, 8:16].astype(int)).max() <= 1
    np.testing.assert_array_equal(out[7, 10], [0, 0, 255, 255])
