"""Effect pipeline — applies an ordered chain of effect instances to a frame.

Includes auto-disable for effects that fail consecutively and rolling timing
stats. Slow effects are only logged: output never depends on wall-clock time.
"""

import logging
import threading
import time
from collections import defaultdict, deque

import sentry_sdk

from effects.base import EffectBase
from engine.container import EffectContainer
from engine.frame import Frame
from security import MAX_CHAIN_DEPTH

logger = logging.getLogger(__name__)

# Per-effect timing threshold (milliseconds)
EFFECT_WARN_MS = 100

# Auto-disable threshold: consecutive failures before disabling
DISABLE_THRESHOLD = 3

# Thread-safe failure tracking, keyed by effect instance id
_health_lock = threading.Lock()
_failure_counts: dict[str, int] = defaultdict(int)
_disabled_effects: set[str] = set()

# Rolling timing stats per effect type
_effect_timing: dict[str, deque] = defaultdict(lambda: deque(maxlen=100))


def _record_failure(effect_id: str) -> bool:
    """Record a failure. Returns True if effect was just disabled."""
    with _health_lock:
        _failure_counts[effect_id] += 1
        if _failure_counts[effect_id] >= DISABLE_THRESHOLD:
            _disabled_effects.add(effect_id)
            return True
    return False


def _record_success(effect_id: str):
    """Reset consecutive failure counter on success."""
    with _health_lock:
        _failure_counts[effect_id] = 0


def get_effect_health() -> dict:
    """Side-channel: returns current health state."""
    with _health_lock:
        return {
            "failure_counts": dict(_failure_counts),
            "disabled_effects": list(_disabled_effects),
        }


def reset_effect_health(effect_id: str | None = None):
    """Reset health tracking. If effect_id given, reset just that effect."""
    with _health_lock:
        if effect_id:
            _failure_counts.pop(effect_id, None)
            _disabled_effects.discard(effect_id)
        else:
            _failure_counts.clear()
            _disabled_effects.clear()


def record_timing(effect_type: str, elapsed_ms: float):
    """Record a timing sample for an effect type."""
    with _health_lock:
        _effect_timing[effect_type].append(elapsed_ms)


def get_effect_stats() -> dict[str, dict]:
    """Return p50/p95/max per effect type."""
    result = {}
    with _health_lock:
        snapshot = {k: sorted(v) for k, v in _effect_timing.items()}
    for etype, s in snapshot.items():
        result[etype] = {
            "p50": s[len(s) // 2] if s else 0,
            "p95": s[int(len(s) * 0.95)] if len(s) >= 20 else None,
            "max": max(s) if s else 0,
            "samples": len(s),
        }
    return result


def flush_timing():
    """Clear all timing stats."""
    with _health_lock:
        _effect_timing.clear()


def apply_chain(frame: Frame, effects: list[EffectBase], frame_number: int) -> Frame:
    """Apply effects to a frame in ascending ``order``, in place.

    Args:
        frame:        Frame whose pixels are replaced.
        effects:      Effect instances; ties in ``order`` keep list order.
        frame_number: Frame number the effects' curves are evaluated at.

    Returns:
        The same Frame object.

    Raises:
        ValueError: If the chain exceeds MAX_CHAIN_DEPTH.
    """
    if len(effects) > MAX_CHAIN_DEPTH:
        raise ValueError(
            f"Chain depth {len(effects)} exceeds maximum {MAX_CHAIN_DEPTH}"
        )

    for i, effect in enumerate(sorted(effects, key=lambda e: e.order)):
        with _health_lock:
            disabled = effect.id in _disabled_effects
            prior_failures = _failure_counts.get(effect.id, 0)
        if disabled:
            logger.debug("Skipping auto-disabled effect %s", effect.id)
            continue

        # Breadcrumbs only for effects with prior failures
        if prior_failures > 0:
            sentry_sdk.add_breadcrumb(
                category="effect",
                message=f"Processing {effect.class_name} (prior failures: {prior_failures})",
                data={"chain_position": i, "frame_number": frame_number},
                level="warning",
            )

        container = EffectContainer(effect)
        t0 = time.monotonic()
        container.process(frame, frame_number)
        elapsed_ms = (time.monotonic() - t0) * 1000
        record_timing(effect.class_name, elapsed_ms)

        if container.last_error is not None:
            if _record_failure(effect.id):
                logger.warning(
                    "Effect %s (%s) auto-disabled after %d consecutive failures",
                    effect.class_name,
                    effect.id,
                    DISABLE_THRESHOLD,
                )
        else:
            _record_success(effect.id)

        if elapsed_ms > EFFECT_WARN_MS:
            logger.warning(
                "Effect %s took %.0fms (>%dms warn threshold) on frame %d",
                effect.class_name,
                elapsed_ms,
                EFFECT_WARN_MS,
                frame_number,
            )

    return frame
