"""lspbridge package root."""

from lspbridge.exceptions import LspClientError, NeverRaise, NeverThrown
from lspbridge.invariants import never

__all__ = ["__version__", "LspClientError", "NeverRaise", "NeverThrown", "never"]

__version__ = "0.1.0"
