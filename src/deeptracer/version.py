# src/deeptracer/version.py
"""SDK identification sent with every ingestion request."""

__version__ = "0.4.0"

SDK_NAME = "python"
SDK_VERSION = __version__
SDK_HEADER = "x-deeptracer-sdk"
