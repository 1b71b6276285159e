"""
Job listing extraction pipeline.

Turns a rendered search results page into raw job nodes using structured
data, embedded application state or DOM heuristics, in that order.
"""

__version__ = "1.0.0"
