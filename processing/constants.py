MAX_PIXEL_VALUE = 65535

# Disks closer to a circle than this have an unreliable tilt angle.
CIRCLE_EPSILON = 0.001

# Applied to the black point estimate before it is used as a stretch floor.
BLACK_POINT_SAFETY_FACTOR = 1.2

# Ellipse fitting
LIMB_SENSITIVITY = 10
CORONAGRAPH_LIMB_SENSITIVITY = 6
CORRECTED_ELLIPSE_SAMPLES = 32
LIMB_SMOOTHING_SIGMA = 2
LIMB_MIN_GRADIENT_RATIO = 0.05
# Rows whose limb edges are weaker than this fraction of the strongest edge
# are not used.
LIMB_EDGE_RATIO = 0.5

# Geometry
UNDERSAMPLING_RATIO = 0.98
TILT_WARNING_DEG = 1

# Banding
DEFAULT_BANDING_WIDTH = 24
DEFAULT_BANDING_PASSES = 3

# Histograms
HISTOGRAM_BINS = 256
PEAK_JUMP_FACTOR = 100
PEAK_STOP_FRACTION = 0.25

# Autohistogram
DEFAULT_AUTOHISTOGRAM_GAMMA = 1.5
PROTUS_GAMMA = 0.75
MASK_DOWNSAMPLING = 16
MASK_BLUR_SIGMA = 2
DYNAMIC_CUTOFF_SHIFT = 0.5
CLAHE_TILES = 8
CLAHE_BINS = 64
CLAHE_CLIP_LIMIT = 0.01
CLAHE_WEIGHT = 0.25

# Product stretches
RAW_CUTOFF_RATIO = 0.9
COLORIZED_CUTOFF_RATIO = 0.9
ARCSINH_STRETCH = 10
COLORIZED_MAX_STRETCH = 200
DOPPLER_STRETCH = 1
DOPPLER_MAX_STRETCH = 20

# Coronagraph
CORONAGRAPH_SIGMA_R = 2
CORONAGRAPH_SIGMA_THETA = 2
CORONAGRAPH_ATTENUATION_POWER = 10
