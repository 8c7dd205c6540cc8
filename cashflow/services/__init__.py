"""
External services and stores.

Storage backends, identity providers, the category registry and the
snapshot cache.
"""
