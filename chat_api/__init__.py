"""
Chat backend that relays conversations to Google Gemini and persists them per user.
"""

__version__ = "1.2.0"
