"""commit-patch: commit exactly the changes in a patch, leaving the rest of
the working tree alone."""

__version__ = "0.1.0"
