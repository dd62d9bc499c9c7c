"""manu: interactive coding assistant with a provider-agnostic tool loop."""

__version__ = "1.0.0"
