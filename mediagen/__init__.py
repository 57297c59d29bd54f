"""Generation job lifecycle for text-to-image and text/image-to-video providers."""

__version__ = "0.1.0"
