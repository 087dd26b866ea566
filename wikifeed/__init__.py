"""
WikiFeed - personalized Wikipedia reading feed

Buffers random Wikipedia articles, learns category preferences from reader
interactions and interleaves recommendations into an endless feed.
"""

__version__ = "0.1.0"
