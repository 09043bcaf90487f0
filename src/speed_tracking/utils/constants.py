"""
Constants used throughout the speed tracking system
"""

# Tracker matching
IOU_THRESHOLD = 0.15  # Minimum IoU to continue a track
CENTROID_DIST_THRESHOLD = 0.20  # Centroid fallback radius (normalized)
LOCKED_CENTROID_DIST_THRESHOLD = 0.35  # Wider radius for the locked target
LOCKED_MATCH_MIN_SCORE = 0.15  # Minimum combined score to re-match locked target
LOCKED_BBOX_SMOOTHING = 0.35  # Share of the OLD box kept when smoothing
MAX_TRACKS = 20
STALE_THRESHOLD_MS = 2000
LOCKED_STALE_THRESHOLD_MS = 5000

# Speed calculation
MIN_FRAME_DELTA_MS = 50
STATIONARY_THRESHOLD_KMH = 5.0
BASE_MIN_DISPLACEMENT_PX = 6.0
MAX_TARGET_SPEED_KMH = 250.0
MEDIAN_WINDOW_SIZE = 5
OBSERVER_STATIONARY_KMH = 3.0  # Below this the camera is treated as stationary
LATERAL_WEIGHT = 0.65
DEPTH_WEIGHT = 0.35
DIRECTION_AREA_CHANGE = 0.03  # 3% area change separates depth from lateral
SIDEWAYS_MIN_DISPLACEMENT_PX = 15.0
FAST_EMA_ALPHA = 0.35  # Used when the filtered speed jumps
FAST_EMA_JUMP_KMH = 20.0
STATIONARY_DECAY = 0.90
NOMINAL_FRAME_INTERVAL_MS = 300

# Calibration defaults (value, min, max)
DEFAULT_SPEED_SCALE_FACTOR = 0.035
DEFAULT_AREA_SCALE_FACTOR = 0.8
DEFAULT_EMA_ALPHA = 0.15
DEFAULT_DETECTION_CONFIDENCE_FLOOR = 0.30
DEFAULT_FRAME_DELAY_MS = 300
DEFAULT_PLATE_VOTE_THRESHOLD = 2
DEFAULT_OCR_CROP_PAD_X = 0.05
DEFAULT_OCR_CROP_PAD_BOT = 0.10

SPEED_SCALE_RANGE = (0.015, 0.060)
AREA_SCALE_RANGE = (0.3, 1.5)
EMA_ALPHA_RANGE = (0.05, 0.30)
DETECTION_FLOOR_RANGE = (0.20, 0.55)
FRAME_DELAY_RANGE = (200, 800)
PLATE_VOTE_RANGE = (1, 4)
OCR_PAD_X_RANGE = (0.02, 0.12)
OCR_PAD_BOT_RANGE = (0.05, 0.18)

# Calibration sample windows and minimums
FRAME_TIMING_WINDOW = 100
SPEED_ERROR_WINDOW = 50
MIN_SPEED_SAMPLES = 10
MIN_VARIANCE_SAMPLES = 10
MIN_OCR_SAMPLES = 5
MIN_DETECTION_SAMPLES = 50
MIN_TIMING_SAMPLES = 20

# Session
IMPROVE_INTERVAL_FRAMES = 200  # Run a calibration cycle every N frames
STATUS_REPORT_INTERVAL = 100  # Log status every N frames
DETECTION_TIMEOUT_SECONDS = 2.0

# Persistence
DEFAULT_STATE_FILE = "data/state/calibration.json"

# Environment variables
ENV_STATE_FILE = "SPEED_TRACKING_STATE_FILE"
