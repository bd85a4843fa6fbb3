"""Outline — draw a solid outline around a subject on a transparent background.

Mask pipeline (order matters):
    alpha mask → gaussian blur (σ = width // 3) → threshold > 0
    → canny edges → gaussian blur (σ = 0.8) → OR with dilated mask

The fill color is copied through the refined mask, then the source is copied
back on top through the *unblurred* alpha mask so the subject keeps its own
antialiased edge. The outline only shows in the band between the two masks.
"""

import cv2
import numpy as np

EFFECT_CATEGORY = "stylize"

# Canny thresholds tuned for a strict {0, 255} input
EDGE_LOW_THRESHOLD = 250
EDGE_HIGH_THRESHOLD = 255
EDGE_SOFTEN_SIGMA = 0.8

PARAMS: dict = {
    "width": {
        "type": "float",
        "min": 0.0,
        "max": 1000.0,
        "default": 3.0,
        "label": "Width",
        "curve": "linear",
        "unit": "px",
        "description": "Outline thickness (grows in steps of 3)",
    },
    "red": {
        "type": "float",
        "min": 0.0,
        "max": 255.0,
        "default": 0.0,
        "label": "Red",
        "description": "Red channel of the outline",
    },
    "green": {
        "type": "float",
        "min": 0.0,
        "max": 255.0,
        "default": 0.0,
        "label": "Green",
        "description": "Green channel of the outline",
    },
    "blue": {
        "type": "float",
        "min": 0.0,
        "max": 255.0,
        "default": 0.0,
        "label": "Blue",
        "description": "Blue channel of the outline",
    },
    "alpha": {
        "type": "float",
        "min": 0.0,
        "max": 255.0,
        "default": 255.0,
        "label": "Alpha",
        "description": "Opacity of the outline",
    },
}


def clamp_params(values: dict) -> dict:
    """Clamp resolved values to their declared ranges. Missing keys use defaults."""
    clamped = {}
    for key, param in PARAMS.items():
        value = float(values.get(key, param["default"]))
        clamped[key] = max(param["min"], min(param["max"], value))
    return clamped


def extract_alpha_mask(image: np.ndarray) -> np.ndarray:
    """Single-channel copy of the alpha channel. Never aliases the source."""
    return image[:, :, 3].copy()


def dilate_mask(alpha_mask: np.ndarray, width: float) -> np.ndarray:
    """Grow the alpha footprint: blur by σ = width // 3, then binarize at > 0."""
    sigma = int(width // 3)
    if sigma > 0:
        blurred = cv2.GaussianBlur(
            alpha_mask,
            (0, 0),
            sigmaX=sigma,
            sigmaY=sigma,
            borderType=cv2.BORDER_DEFAULT,
        )
    else:
        blurred = alpha_mask.copy()
    _, dilated = cv2.threshold(blurred, 0, 255, cv2.THRESH_BINARY)
    return dilated


def refine_edges(dilated: np.ndarray) -> np.ndarray:
    """Soften the hard threshold boundary of a binary mask.

    Interior pixels stay 255; only a thin ramp around the boundary is added.
    """
    edges = cv2.Canny(dilated, EDGE_LOW_THRESHOLD, EDGE_HIGH_THRESHOLD)
    soft_edges = cv2.GaussianBlur(
        edges,
        (0, 0),
        sigmaX=EDGE_SOFTEN_SIGMA,
        sigmaY=EDGE_SOFTEN_SIGMA,
        borderType=cv2.BORDER_DEFAULT,
    )
    return cv2.bitwise_or(dilated, soft_edges)


def _premultiplied_fill(shape: tuple, rgba: tuple[int, int, int, int]) -> np.ndarray:
    """Solid canvas of one color, premultiplied by its own alpha."""
    r, g, b, a = rgba
    color = np.array([r, g, b], dtype=np.uint32)
    rgb = (color * a + 127) // 255
    canvas = np.empty((shape[0], shape[1], 4), dtype=np.uint8)
    canvas[:, :, :3] = rgb.astype(np.uint8)
    canvas[:, :, 3] = a
    return canvas


def composite_outline(
    image: np.ndarray,
    outline_mask: np.ndarray,
    alpha_mask: np.ndarray,
    rgba: tuple[int, int, int, int],
) -> np.ndarray:
    """Fill through outline_mask, then the source through alpha_mask on top.

    Source pixels are copied untouched, so the result is premultiplied RGBA
    whenever the input is.
    """
    fill = _premultiplied_fill(image.shape, rgba)
    output = np.zeros_like(image)

    outline_region = outline_mask != 0
    output[outline_region] = fill[outline_region]

    subject_region = alpha_mask != 0
    output[subject_region] = image[subject_region]
    return output


def render(
    image: np.ndarray,
    width: float,
    red: float,
    green: float,
    blue: float,
    alpha: float,
) -> np.ndarray:
    """Run the whole outline pipeline on one RGBA image."""
    if image.shape[0] == 0 or image.shape[1] == 0:
        return image.copy()

    alpha_mask = extract_alpha_mask(image)
    dilated = dilate_mask(alpha_mask, width)
    outline_mask = refine_edges(dilated)

    rgba = (int(round(red)), int(round(green)), int(round(blue)), int(round(alpha)))
    return composite_outline(image, outline_mask, alpha_mask, rgba)

