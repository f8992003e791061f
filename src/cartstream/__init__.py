"""Shopping cart mutations with optimistic responses and pushed updates."""

__version__ = "0.1.0"
