"""Security validation gates for the outline sidecar."""

import json
import os
import re

# Pixel cap for images received over IPC (8K UHD)
MAX_PIXELS = 7680 * 4320

# Base64 payload cap for one image (bytes of encoded text)
MAX_IMAGE_PAYLOAD = 64 * 1024 * 1024

# Effect chain depth cap
MAX_CHAIN_DEPTH = 10


def validate_image_size(width: int, height: int) -> list[str]:
    """Validate image geometry. Returns list of errors (empty = valid).

    Zero-area images are valid (the effect treats them as a no-op).
    """
    errors: list[str] = []
    if width < 0 or height < 0:
        errors.append(f"Invalid image size {width}x{height}")
    elif width * height > MAX_PIXELS:
        errors.append(
            f"Image {width}x{height} exceeds maximum of {MAX_PIXELS} pixels"
        )
    return errors


def validate_image_payload(data: str) -> list[str]:
    """Validate a base64 image payload before decoding. Returns list of errors."""
    errors: list[str] = []
    if not isinstance(data, str) or not data:
        errors.append("missing image")
    elif len(data) > MAX_IMAGE_PAYLOAD:
        errors.append(
            f"Image payload {len(data)} bytes exceeds maximum {MAX_IMAGE_PAYLOAD}"
        )
    return errors


def validate_frame_number(frame_number) -> list[str]:
    """Validate a requested frame number. Returns list of errors."""
    errors: list[str] = []
    if isinstance(frame_number, bool) or not isinstance(frame_number, int):
        errors.append("frame_index must be an integer")
    elif frame_number < 0:
        errors.append("frame_index must be non-negative")
    return errors


def validate_chain_depth(chain: list) -> list[str]:
    """Validate effect chain depth against the cap. Returns list of errors."""
    errors: list[str] = []
    if len(chain) > MAX_CHAIN_DEPTH:
        errors.append(f"Chain depth {len(chain)} exceeds maximum {MAX_CHAIN_DEPTH}")
    return errors


# --- PII stripping for Sentry and crash dumps ---

_HOME = os.path.expanduser("~")
_USERNAME = os.path.basename(_HOME)
_PATH_PATTERN = re.compile(r"/Users/[^/\s]+|/home/[^/\s]+|C:\\Users\\[^\\\s]+")
_SENSITIVE_KEYS = {"_token", "token", "auth", "key", "secret", "password", "dsn"}


def _scrub_dict(d: dict):
    """Redact values for keys that look sensitive."""
    for key in list(d.keys()):
        if any(s in key.lower() for s in _SENSITIVE_KEYS):
            d[key] = "<REDACTED>"


def strip_pii(event: dict, hint: dict) -> dict:
    """Sentry before_send hook. Strips file paths and auth tokens.

    Also usable for crash dump sanitization.
    """
    event_str = json.dumps(event)
    # Replace OS username and home path
    event_str = event_str.replace(_HOME, "<HOME>")
    event_str = event_str.replace(_USERNAME, "<USER>")
    event_str = _PATH_PATTERN.sub("<REDACTED_PATH>", event_str)
    event = json.loads(event_str)

    # Strip sensitive keys from extra/context/tags
    _scrub_dict(event.get("extra", {}))
    for ctx in event.get("contexts", {}).values():
        if isinstance(ctx, dict):
            _scrub_dict(ctx)
    return event
