"""Core interfaces and abstractions.

This package holds the collaborator contracts that keep the sync layer
independent of the managed backend it talks to.
"""
