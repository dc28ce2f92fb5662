"""Engine-wide constants - single source of truth for layout parameters.

Import from here instead of defining local constants.  Values that reach
the device program are emitted into its header by
:func:`hydrogpu.device.program.program_header`.
"""

# Grid layout
NUM_GHOST = 2                 # Ghost layers on each side of an active axis
MIN_ACTIVE_CELLS = 2 * NUM_GHOST + 2

# Timestep reduction
REDUCE_RADIX = 16             # Elements folded per reduction work item

# Dispatch geometry (work-group sizes on GPU devices)
LOCAL_SIZE_1D = (16,)
LOCAL_SIZE_2D = (16, 16)
LOCAL_SIZE_3D = (8, 8, 8)     # Smaller groups in 3D to respect device limits

# Defaults
DEFAULT_SLOPE_LIMITER = "superbee"
DEFAULT_GRAVITATIONAL_CONSTANT = 1.0

# Axis names in storage order of the spatial indices
AXIS_NAMES = ("x", "y", "z")
