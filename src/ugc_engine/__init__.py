"""UGC Video Engine - credit-metered product video generation backend."""

__version__ = "0.1.0"
