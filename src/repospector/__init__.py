"""RepoSpector - hybrid code retrieval and multi-pass pull request review."""

__version__ = "0.3.0"

from .core.exceptions import RepoSpectorError

__all__ = ["RepoSpectorError", "__version__"]
