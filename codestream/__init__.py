"""
CodeStream - incremental multi-file generation stream pipeline
"""

__version__ = "1.0.0"
