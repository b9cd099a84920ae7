"""Diff-driven, versioned inventory store for cloud resource snapshots."""

__version__ = "0.1.0"
