"""
Distance sampling analysis package for GPNP line transect surveys.

This package contains domain-specific logic organized into:
- config: Configuration parameters and paths
- preprocessing: Loading, perpendicular distances and schema normalization
- detection: Detection function fitting
- analysis: Model selection and goodness of fit
- estimation: Density and abundance estimates
- reporting: Text report
"""

__version__ = "1.0.0"
