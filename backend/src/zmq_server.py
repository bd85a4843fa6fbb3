import base64
import binascii
import json
import logging
import time
import uuid

import sentry_sdk
import zmq
from PIL import UnidentifiedImageError

from effects import registry
from engine.frame import (
    Frame,
    decode_png,
    encode_png,
    premultiply,
    unpremultiply,
)
from engine.pipeline import (
    apply_chain,
    flush_timing,
    get_effect_health,
    get_effect_stats,
)
from project.schema import InvalidJSON, deserialize
from security import (
    MAX_IMAGE_PAYLOAD,
    validate_chain_depth,
    validate_frame_number,
    validate_image_payload,
    validate_image_size,
)

logger = logging.getLogger(__name__)


class ZMQServer:
    def __init__(self):
        self.context = zmq.Context()
        self.socket = self.context.socket(zmq.REP)
        # Room for one base64 PNG frame plus the effect documents
        self.socket.setsockopt(zmq.MAXMSGSIZE, MAX_IMAGE_PAYLOAD + 1_048_576)
        self.port = self.socket.bind_to_random_port("tcp://127.0.0.1")
        # Dedicated ping socket, never blocked by heavy renders
        self.ping_socket = self.context.socket(zmq.REP)
        self.ping_socket.setsockopt(zmq.MAXMSGSIZE, 4096)  # 4 KB limit (pings only)
        self.ping_port = self.ping_socket.bind_to_random_port("tcp://127.0.0.1")
        # Auth token required from every local client
        self.token = str(uuid.uuid4())
        self.start_time = time.time()
        self.running = False
        self.last_frame_ms = 0.0

    def reset_state(self):
        """Clear accumulated state without closing sockets/context.

        Used by session-scoped test fixtures to reset between tests
        while keeping the server running.
        """
        flush_timing()
        self.last_frame_ms = 0.0

    def _validate_token(self, message: dict) -> str | None:
        """Validate auth token. Returns error message or None if valid."""
        msg_token = message.get("_token")
        if msg_token != self.token:
            return "invalid or missing auth token"
        return None

    def _make_ping_response(self, msg_id: str | None) -> dict:
        return {
            "id": msg_id,
            "status": "alive",
            "uptime_s": round(time.time() - self.start_time, 1),
            "last_frame_ms": self.last_frame_ms,
        }

    def handle_message(self, message: dict) -> dict:
        cmd = message.get("cmd")
        msg_id = message.get("id")

        # Auth token required on all commands
        token_err = self._validate_token(message)
        if token_err:
            return {"id": msg_id, "ok": False, "error": token_err}

        if cmd == "ping":
            return self._make_ping_response(msg_id)
        elif cmd == "shutdown":
            self.running = False
            return {"id": msg_id, "ok": True}
        elif cmd == "list_effects":
            return {"id": msg_id, "ok": True, "effects": registry.list_all()}
        elif cmd == "apply_effect":
            return self._handle_apply_effect(message, msg_id)
        elif cmd == "effect_properties":
            return self._handle_effect_properties(message, msg_id)
        elif cmd == "validate_effect":
            return self._handle_validate_effect(message, msg_id)
        elif cmd == "effect_health":
            return {"id": msg_id, "ok": True, **get_effect_health()}
        elif cmd == "effect_stats":
            return {"id": msg_id, "ok": True, "stats": get_effect_stats()}
        elif cmd == "flush_state":
            flush_timing()
            return {"id": msg_id, "ok": True}
        else:
            return {"id": msg_id, "ok": False, "error": f"unknown: {cmd}"}

    def _handle_apply_effect(self, message: dict, msg_id: str | None) -> dict:
        chain_docs = message.get("chain", [])
        frame_index = message.get("frame_index", 1)
        image_b64 = message.get("image")

        if not isinstance(chain_docs, list):
            return {"id": msg_id, "ok": False, "error": "chain must be a list"}

        errors = (
            validate_image_payload(image_b64)
            + validate_frame_number(frame_index)
            + validate_chain_depth(chain_docs)
        )
        if errors:
            return {"id": msg_id, "ok": False, "error": "; ".join(errors)}

        try:
            effects = [registry.from_json_value(doc) for doc in chain_docs]
        except ValueError as e:
            return {"id": msg_id, "ok": False, "error": str(e)}

        try:
            png = base64.b64decode(image_b64, validate=True)
            image = premultiply(decode_png(png))
        except (binascii.Error, UnidentifiedImageError, OSError):
            return {"id": msg_id, "ok": False, "error": "image is not a valid PNG"}

        height, width = image.shape[:2]
        errors = validate_image_size(width, height)
        if errors:
            return {"id": msg_id, "ok": False, "error": "; ".join(errors)}

        t0 = time.time()
        frame = apply_chain(Frame(frame_index, image), effects, frame_index)
        self.last_frame_ms = round((time.time() - t0) * 1000, 2)

        png = encode_png(unpremultiply(frame.get_image()))
        response = {
            "id": msg_id,
            "ok": True,
            "frame_index": frame_index,
            "width": frame.width,
            "height": frame.height,
            "image": base64.b64encode(png).decode("ascii"),
        }
        health = get_effect_health()
        if health["disabled_effects"]:
            response["disabled_effects"] = health["disabled_effects"]
        return response

    def _handle_effect_properties(self, message: dict, msg_id: str | None) -> dict:
        doc = message.get("effect")
        frame_index = message.get("frame_index", 1)
        if not isinstance(doc, dict):
            return {"id": msg_id, "ok": False, "error": "missing effect"}

        errors = validate_frame_number(frame_index)
        if errors:
            return {"id": msg_id, "ok": False, "error": "; ".join(errors)}

        try:
            effect = registry.from_json_value(doc)
        except ValueError as e:
            return {"id": msg_id, "ok": False, "error": str(e)}

        return {
            "id": msg_id,
            "ok": True,
            "frame_index": frame_index,
            "properties": effect.properties(frame_index),
        }

    def _handle_validate_effect(self, message: dict, msg_id: str | None) -> dict:
        data = message.get("json")
        if not isinstance(data, str):
            return {"id": msg_id, "ok": False, "error": "missing json"}
        try:
            root = deserialize(data)
            effect = registry.from_json_value(root)
        except InvalidJSON as e:
            return {"id": msg_id, "ok": False, "error": e.message}
        except ValueError as e:
            return {"id": msg_id, "ok": False, "error": str(e)}
        return {"id": msg_id, "ok": True, "effect": effect.json_value()}

    def run(self):
        self.running = True
        poller = zmq.Poller()
        poller.register(self.socket, zmq.POLLIN)
        poller.register(self.ping_socket, zmq.POLLIN)
        while self.running:
            events = dict(poller.poll(timeout=500))

            # Handle ping socket first (lightweight, never blocked)
            if self.ping_socket in events:
                try:
                    raw = self.ping_socket.recv()
                    message = json.loads(raw)
                    if not isinstance(message, dict):
                        self.ping_socket.send_json(
                            {"ok": False, "error": "Invalid message format"}
                        )
                        continue
                    msg_id = message.get("id")
                    token_err = self._validate_token(message)
                    if token_err:
                        self.ping_socket.send_json(
                            {"id": msg_id, "ok": False, "error": token_err}
                        )
                    else:
                        self.ping_socket.send_json(self._make_ping_response(msg_id))
                except json.JSONDecodeError:
                    self.ping_socket.send_json(
                        {"ok": False, "error": "Invalid message format"}
                    )
                except zmq.ZMQError:
                    logger.error("ZMQ error on ping socket")
                    break  # socket state is unrecoverable

            # Handle main command socket
            if self.socket in events:
                try:
                    raw = self.socket.recv()
                    message = json.loads(raw)
                except json.JSONDecodeError:
                    # MUST send reply before next recv (REP protocol)
                    self.socket.send_json(
                        {"ok": False, "error": "Invalid message format"}
                    )
                    continue
                except zmq.ZMQError:
                    logger.error("ZMQ error on main socket")
                    break

                if not isinstance(message, dict):
                    self.socket.send_json(
                        {"ok": False, "error": "Invalid message format"}
                    )
                    continue

                try:
                    response = self.handle_message(message)
                except Exception as e:
                    sentry_sdk.capture_exception(e)
                    logger.error(
                        "Unhandled handler error: %s",
                        type(e).__name__,
                        extra={"cmd": message.get("cmd")},
                    )
                    response = {"ok": False, "error": "Internal processing error"}

                self.socket.send_json(response)
        self.close()

    def close(self):
        self.ping_socket.close()
        self.socket.close()
        self.context.term()
