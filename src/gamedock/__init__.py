"""gamedock: run native and Wine game binaries in isolated container sessions."""

__version__ = "0.1.0"
