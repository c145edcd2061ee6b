"""lsr: content-addressed directory snapshots and change auditing."""

__version__ = "0.3.0"
