"""Online order lifecycle engine and pickup slot scheduler."""

__version__ = "0.1.0"
