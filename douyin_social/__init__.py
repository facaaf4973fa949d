"""Follow, messaging, user, like-count, password and token services for a short-video platform."""

__version__ = "0.1.0"

__all__ = [
    "encryption",
    "follow",
    "likes",
    "logger",
    "messages",
    "models",
    "token",
    "users",
]