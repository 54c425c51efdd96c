"""
driftscope - directory tree drift detection.

Compares two directory trees, or a directory against a recorded
baseline manifest, and reports which entries are equal, different,
present on one side only, or could not be compared.
"""

__version__ = "1.0.0"
