"""chatsync: client-side sync and delivery reliability for a realtime chat app."""

__version__ = "0.1.0"
