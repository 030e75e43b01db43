"""
Utility functions for the cbdrank package.
"""


def check_gpu_available() -> bool:
    """
    Check if a CUDA device is available through cupy.
    
    Returns:
        True if GPU is available, False otherwise.
    """
    try:
        import cupy as cp
    except ImportError:
        return False
    try:
        return cp.cuda.runtime.getDeviceCount() > 0
    except Exception:
        return False
