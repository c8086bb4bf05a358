"""
Utility Modules for news-tts.

    - tasks.py: All-or-nothing concurrent joins
    - timeit.py: Performance measurement utilities
"""
