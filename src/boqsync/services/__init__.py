"""External service integrations.

This module contains the client for the BoQ application's approval service.
Keeping it behind one class allows for easy mocking during testing and clean
abstraction of the remote API.
"""
