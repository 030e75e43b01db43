"""
Run configuration for cbdrank.

Defaults can be overridden through environment variables or a .env file.
"""

import os

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

DAMPING_FACTOR = float(os.getenv('CBDRANK_DAMPING_FACTOR', '0.85'))
TOLERANCE = float(os.getenv('CBDRANK_TOLERANCE', '1e-6'))
MAX_ITERATIONS = int(os.getenv('CBDRANK_MAX_ITERATIONS', '100'))

# 'numpy', 'cupy' or 'auto'
BACKEND = os.getenv('CBDRANK_BACKEND', 'auto')
WORKERS = int(os.getenv('CBDRANK_WORKERS', '1'))

RUN_CONFIG = {
    'damping_factor': DAMPING_FACTOR,
    'tolerance': TOLERANCE,
    'max_iterations': MAX_ITERATIONS,
    'backend': BACKEND,
    'workers': WORKERS,
}
