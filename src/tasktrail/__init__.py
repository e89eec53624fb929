"""Local-first task tracking stored in git, with history rebuilt from the git log."""

__version__ = "0.1.0"
