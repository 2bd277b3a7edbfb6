"""
Centralized configuration constants for the editor core.

Ground rules:
- RGBA8, straight alpha everywhere
- One surface per pipeline, one render at a time
"""

import os

# Checkerboard drawn when no background is selected.
CHECKER_TILE_SIZE = 32
CHECKER_COLOR_A = "#FFFFFF"
CHECKER_COLOR_B = "#F5F7FA"

DEFAULT_BACKGROUND_COLOR = "#ffffff"
DEFAULT_BORDER_COLOR = "#FFD700"
DEFAULT_BORDER_SIZE = 40
DEFAULT_BLUR_RADIUS = 10

# Border ring thickness is border size / BORDER_SIZE_DIVISOR, at least 1 px.
BORDER_SIZE_DIVISOR = 8

MAX_UPLOAD_BYTES = 5 * 1024 * 1024
DEFAULT_MAX_MEGAPIXELS = 64.0
DEFAULT_HTTP_TIMEOUT_S = 12.0

DOWNLOAD_SUFFIX = "_removebg.png"
DEFAULT_DOWNLOAD_NAME = "processed-image.png"
ARTIFACT_SCHEME = "bgedit://artifact/"

# Progress phases reported while the background is being removed: (upper bound, label).
PROGRESS_PHASES = [
    (15, "Loading image..."),
    (30, "Preparing image..."),
    (50, "Analyzing image..."),
    (80, "Removing background..."),
]
PROGRESS_FINAL_PHASE = "Finalizing..."

# NOTE: BiRefNet internally splits into patches; this size must be divisible by
# its patching grid. 1088 is the closest "1080-class" square that works reliably.
TARGET_SIZE = 1088
PAD_COLOR = 127
EDGE_BLUR_RADIUS = 1
ALPHA_THRESHOLD = 0.05

IMAGENET_MEAN = [0.485, 0.456, 0.406]
IMAGENET_STD = [0.229, 0.224, 0.225]

# Optional matte cleanup step (helps remove thin white halo artifacts).
# Set to 0 to disable.
ERODE_KERNEL_SIZE = 3

DEFAULT_MODEL_SPEC = "hf:ZhengPeng7/BiRefNet"


def get_max_megapixels() -> float:
    try:
        return float(os.getenv("BGEDIT_MAX_MEGAPIXELS", str(DEFAULT_MAX_MEGAPIXELS)))
    except ValueError:
        return DEFAULT_MAX_MEGAPIXELS


def get_http_timeout_s() -> float:
    try:
        return float(os.getenv("BGEDIT_HTTP_TIMEOUT_S", str(DEFAULT_HTTP_TIMEOUT_S)))
    except ValueError:
        return DEFAULT_HTTP_TIMEOUT_S
