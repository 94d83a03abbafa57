"""
trackdeal: negotiation backend for music-industry contract collaboration.

Collaborators open a negotiation, exchange conversation messages, receive
optional AI sentiment scores and suggestions, and close the negotiation
as completed or cancelled.
"""

__version__ = "0.1.0"
