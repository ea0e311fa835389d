"""DNS sinkhole resolver package."""

__version__ = "0.1.0"
