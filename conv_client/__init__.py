"""
Parallel load client for the convolution front service.

The package builds convolutional layer requests from generated or manually
entered matrices, fires a configurable number of them concurrently at one
front endpoint over gRPC, and logs latency and outcome for every request.
"""

from .main import main

__all__ = ["main"]
