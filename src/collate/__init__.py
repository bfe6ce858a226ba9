"""Collate: flashcard study scheduling and mastery tracking."""

from collate.consts import VERSION

__version__ = VERSION
