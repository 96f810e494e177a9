"""ChromaSort: organize a picture folder by dominant colors and palette tags."""

__version__ = "1.0.0"
