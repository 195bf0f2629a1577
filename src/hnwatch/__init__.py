"""hnwatch: notify about new Hacker News stories, once per story."""

__version__ = "0.1.0"
