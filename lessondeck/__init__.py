"""Generate Gamma slide decks from Markdown lesson outlines."""

__version__ = "0.1.0"
