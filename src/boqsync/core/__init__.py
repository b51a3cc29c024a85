"""Core lifecycle management.

This module contains the component that wires the queue, cache, credential
watcher and flush engine together and drives them for the lifetime of the
process.
"""
