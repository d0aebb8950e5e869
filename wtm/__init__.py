"""wtm: git worktree lifecycle manager."""

__version__ = "0.1.0"
