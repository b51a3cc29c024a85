"""Local persistence for queued submissions."""
