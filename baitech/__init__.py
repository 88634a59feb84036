"""BaiTech pricing and technician matching core."""

__version__ = "0.1.0"
