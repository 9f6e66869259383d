"""
Spectral projection: scaling, truncated SVD, cross-recording projection,
component denoising and component selection.
"""

from .scaling import ScaleResult, standardize, center, center_only, unit_scale
from .denoise import tv1d, denoise_components
from .projector import Projection, SpectralProjector, decompose, select_components

__all__ = [
    'ScaleResult',
    'standardize',
    'center',
    'center_only',
    'unit_scale',
    'tv1d',
    'denoise_components',
    'Projection',
    'SpectralProjector',
    'decompose',
    'select_components',
]
