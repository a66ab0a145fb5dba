"""rampbench -- find the request rate at which an HTTP endpoint breaks."""

__version__ = "0.1.0"
