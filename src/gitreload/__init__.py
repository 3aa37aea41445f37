"""gitreload - git-backed configuration staging and hot-reload supervisor."""

__version__ = "0.1.0"
