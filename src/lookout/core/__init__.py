"""Core domain package for lookout.

Core contains keyword matching, channel resolution, and the debounced
delivery engine without any Discord or storage-specific code, keeping the
business logic portable.
"""
