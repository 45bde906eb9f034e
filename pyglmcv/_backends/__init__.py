"""
Backend selection and management.

Provides a unified interface for the weighted least squares solvers used by
IRLS.
"""

import warnings

from .base import BackendBase, LinearModelResult

try:
    from .cpu_fp64_backend import CPUBackendFP64
    CPU_AVAILABLE = True
except ImportError:
    CPU_AVAILABLE = False
    warnings.warn("CPU backend unavailable - installation error!")


def get_backend(backend='auto') -> BackendBase:
    """
    Get computational backend.

    Parameters
    ----------
    backend : str or BackendBase
        Backend selection:
        - 'auto': Best available backend
        - 'cpu': CPU with NumPy/SciPy (FP64, pivoted QR)
        An existing backend instance is returned unchanged.

    Returns
    -------
    BackendBase
        Backend instance

    Examples
    --------
    >>> backend = get_backend('auto')
    >>> backend.name
    'cpu_fp64'
    """
    if isinstance(backend, BackendBase):
        return backend

    if backend in ('auto', 'cpu'):
        if not CPU_AVAILABLE:
            raise RuntimeError("CPU backend unavailable!")
        return CPUBackendFP64()

    raise ValueError(
        f"Unknown backend: '{backend}'\n"
        f"Valid options: 'auto', 'cpu'"
    )


def list_available_backends() -> list:
    """List names of available backends."""
    backends = []
    if CPU_AVAILABLE:
        backends.append('cpu')
    return backends


def print_backend_info():
    """Print detailed backend information (diagnostic)."""
    print("pyglmcv Backend Status")
    print("=" * 50)
    print(f"\nAvailable Backends:")
    print(f"  CPU (FP64):          {'✓' if CPU_AVAILABLE else '✗'} - pivoted QR (exact WLS)")

    print(f"\nRecommended Backend:")
    try:
        backend = get_backend('auto')
        info = backend.get_device_info()
        print(f"  {backend.name} ({info['library']})")
    except RuntimeError as e:
        print(f"  Error: {e}")


__all__ = [
    'get_backend',
    'list_available_backends',
    'print_backend_info',
    'BackendBase',
    'LinearModelResult',
    'CPU_AVAILABLE',
]


if __name__ == "__main__":
    print_backend_info()
