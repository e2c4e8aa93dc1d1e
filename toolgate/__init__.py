"""toolgate: a permission gate for coding-agent tool calls.

Shell commands, file access and web fetches are checked against a chain of
TOML policies and answered with allow, ask or deny.
"""

__version__ = "0.3.0"

__all__ = ["__version__"]
