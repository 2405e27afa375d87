"""remote-luks: remote_luks/__init__.py."""

__version__ = "0.3.0"
