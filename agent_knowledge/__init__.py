"""
Agent knowledge: indexing and hybrid retrieval of agent knowledge bases.
"""

__version__ = "0.1.0"
