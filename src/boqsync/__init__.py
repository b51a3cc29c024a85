"""boqsync - offline-tolerant shop and material submission for BoQ tooling."""

__version__ = "0.1.0"
