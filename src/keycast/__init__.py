"""keycast - scheduled access-key broadcasting for Telegram channels.

Issues time-limited proxy access keys on managed servers, announces them to
a channel, and revokes them once their validity window has passed.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
