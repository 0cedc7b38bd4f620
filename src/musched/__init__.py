"""musched: adaptive, tag-aware spaced repetition for file-based flashcards."""

from musched.consts import VERSION

__version__ = VERSION
