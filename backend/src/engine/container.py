"""Effect container — runs one effect instance on a frame with crash isolation."""

import logging

import numpy as np
import sentry_sdk

from effects.base import EffectBase
from engine.frame import Frame

logger = logging.getLogger(__name__)


def _capture_with_context(e: Exception, effect_type: str, extra: dict):
    """Capture exception to Sentry with effect-level context and fingerprint dedup."""
    with sentry_sdk.new_scope() as scope:
        scope.set_tag("effect_type", effect_type)
        scope.fingerprint = ["effect-crash", effect_type, type(e).__name__]
        scope.set_context("effect", extra)
        sentry_sdk.capture_exception(e, scope=scope)


class EffectContainer:
    """Container that wraps an effect's get_frame().

    A failing effect never takes the frame down with it: the input pixels are
    restored and the error is kept on ``last_error``.
    """

    def __init__(self, effect: EffectBase):
        self.effect = effect
        self.effect_type = effect.class_name
        self.last_error: Exception | None = None

    def process(self, frame: Frame, frame_number: int) -> Frame:
        self.last_error = None
        dry = frame.get_image().copy()
        shape = dry.shape

        # Context for Sentry (PII-safe: no pixel or param values)
        sentry_ctx = {
            "frame_number": frame_number,
            "effect_id": self.effect.id,
            "frame_shape": list(shape),
        }
        log_ctx = {"effect_type": self.effect_type, "frame_number": frame_number}

        try:
            self.effect.get_frame(frame, frame_number)
        except Exception as e:
            self.last_error = e
            _capture_with_context(e, self.effect_type, sentry_ctx)
            logger.error(
                "Effect %s failed on frame %d: %s",
                self.effect_type,
                frame_number,
                type(e).__name__,
                extra=log_ctx,
            )
            logger.debug("Effect %s exception detail: %s", self.effect_type, e)
            frame.add_image(dry)
            return frame

        wet = frame.get_image()
        try:
            if not isinstance(wet, np.ndarray):
                raise TypeError(
                    f"Effect produced {type(wet).__name__}, expected ndarray"
                )
            if wet.shape != shape:
                raise ValueError(f"Effect produced shape {wet.shape}, expected {shape}")
        except (TypeError, ValueError) as e:
            self.last_error = e
            _capture_with_context(e, self.effect_type, sentry_ctx)
            logger.error(
                "Effect %s produced invalid output on frame %d: %s",
                self.effect_type,
                frame_number,
                type(e).__name__,
                extra=log_ctx,
            )
            frame.add_image(dry)

        return frame
