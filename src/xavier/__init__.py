"""Xavier - iterative AI code edits against cloned repositories."""

__version__ = "0.1.0"
