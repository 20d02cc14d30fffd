"""GenoRing CLI - module orchestration for GenoRing deployments."""

__version__ = "1.0.0"
