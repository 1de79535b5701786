import os

FASTMATH = False  # Global flag for Numba's fastmath option

# Finite-difference differential of the flow
FD_STEP = 1e-9
FD_SCALE = "relative"  # "relative" or "absolute"

# Ensemble execution
N_WORKERS = os.cpu_count() or 1
PARALLEL_MODE = "threads"  # "threads" or "serial"
