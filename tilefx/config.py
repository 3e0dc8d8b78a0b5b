"""
Configuration constants for the effect compositor.

Contains tunable defaults used across the mask preprocessing, floor
composition, shadow capture, post-processing and wind subsystems.
"""

import math

# =============================================================================
# SURFACE MODEL (MASK PREPROCESSING)
# =============================================================================

SURFACE_DEFAULT_RESOLUTION = 512  # Long side of derived fields, in pixels
SURFACE_MIN_RESOLUTION = 8  # Neither side of a derived field goes below this
SURFACE_DEFAULT_THRESHOLD = 0.15
SURFACE_DEFAULT_SDF_RANGE_PX = 64.0  # Distance mapped to sdf01 0.0 / 1.0
SURFACE_DEFAULT_SHORE_WIDTH_PX = 24.0  # Inside distance over which exposure fades

# Channel auto-detection samples a sparse grid and prefers alpha only when it
# carries noticeably more dynamic range than red.
SURFACE_AUTO_CHANNEL_STRIDE = 4
SURFACE_AUTO_CHANNEL_ALPHA_MARGIN = 8

# Gaussian blur: sigma never drops below this and taps are capped per side.
SURFACE_BLUR_MIN_SIGMA = 0.5
SURFACE_BLUR_MAX_TAPS = 16

# Derived fields kept per builder before the least recently used is evicted.
SURFACE_CACHE_MAX_ENTRIES = 32

# Chamfer distance transform
CHAMFER_INF = 1e9
CHAMFER_DIAGONAL = math.sqrt(2.0)

# Rec. 709 luma weights
LUMA_WEIGHTS = (0.2126, 0.7152, 0.0722)

# =============================================================================
# FLOORS AND RENDER LAYERS
# =============================================================================

# Render-order stride between floors. Grown automatically when a floor holds
# more tiles than fit in one stride.
RENDER_ORDER_PER_FLOOR = 10000

# Background planes sit below every floor.
BACKGROUND_SOLID_RENDER_ORDER = -2
BACKGROUND_IMAGE_RENDER_ORDER = -1
INTERNAL_ENTRY_PREFIX = "__"

# Camera / mesh layer indices (0-31).
DEFAULT_LAYER = 0
ROOF_LAYER = 20
OVERLAY_LAYER = 31
MAX_LAYER = 31

# =============================================================================
# RENDER TARGETS
# =============================================================================

MAX_RENDER_TARGET_DIM = 16384
DEFAULT_DRAWING_BUFFER_SIZE = (1280, 720)

SCENE_TARGET_NAME = "scene"
POST_TARGET_A = "post_a"
POST_TARGET_B = "post_b"
SHADOW_FLUID_TARGET = "shadow_fluid_roof"
SHADOW_ROOF_TARGET = "shadow_roof_alpha"
SHADOW_RECEIVER_ALPHA_TARGET = "shadow_receiver_alpha"
SHADOW_RECEIVER_SORT_TARGET = "shadow_receiver_sort"
SHADOW_CONTRIBUTOR_ALPHA_TARGET = "shadow_contributor_alpha"
SHADOW_CONTRIBUTOR_SORT_TARGET = "shadow_contributor_sort"
SHADOW_FACTOR_TARGET = "shadow_factor"

# =============================================================================
# OVERHEAD SHADOWS
# =============================================================================

SHADOW_DEFAULT_OPACITY = 0.6
SHADOW_DEFAULT_LENGTH = 0.04  # Fraction of the reference height
SHADOW_DEFAULT_SOFTNESS = 1.5  # Blur step in texels
SHADOW_DEFAULT_SUN_LATITUDE = 0.5
SHADOW_DEFAULT_INDOOR_DARKNESS = 0.0
SHADOW_DEFAULT_TILE_STRENGTH = 0.8
SHADOW_DEFAULT_SORT_BIAS = 0.002

SHADOW_REFERENCE_HEIGHT_PX = 1080.0
SHADOW_MIN_GUARD_PX = 16.0
SHADOW_MIN_ZOOM = 1e-4
SHADOW_BLUR_CENTER_WEIGHT = 2.0
SHADOW_OUTDOORS_THRESHOLD = 0.5
SHADOW_DEPTH_GATE_SOFTNESS = 0.01  # Linear depth units either side of equal height

# =============================================================================
# WIND ADVECTION
# =============================================================================

WIND_BASE_PX_PER_SEC = 35.0
WIND_GAIN_PX_PER_SEC = 220.0
WIND_BASE_RATE = 1.2
WIND_RATE_MIN = 0.35  # Wind time keeps moving even in dead calm
WIND_RATE_GAIN = 2.25
WIND_DEFAULT_RESPONSIVENESS = 2.5
WIND_MIN_RESPONSIVENESS = 0.05
WIND_STALL_FRAMES = 120
WIND_STALL_EPSILON = 1e-6

# =============================================================================
# EFFECTS
# =============================================================================

WATER_DEFAULT_TINT = (0.12, 0.32, 0.45)
WATER_DEFAULT_TINT_STRENGTH = 0.45
WATER_DEFAULT_WAVE_SCALE = 24.0
WATER_DEFAULT_DISTORTION_PX = 2.0
WATER_DEFAULT_FOAM = 0.35

FLUID_DEFAULT_COLOR = (0.35, 0.75, 0.30)
FLUID_DEFAULT_OPACITY = 0.8
FLUID_DEFAULT_FLOW_SCALE = 6.0

SELECTION_DEFAULT_COLOR = (1.0, 0.85, 0.2)
SELECTION_DEFAULT_OPACITY = 0.9
SELECTION_OUTLINE_FRACTION = 0.06

# =============================================================================
# TEXTURE LOADING
# =============================================================================

LOADER_MAX_COMPLETIONS_PER_PUMP = 64
LOADER_CACHE_MAX_ENTRIES = 128

# =============================================================================
# METRICS
# =============================================================================

METRIC_SAMPLES = 256
