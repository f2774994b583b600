"""
Typed Python wrappers over the JSON API (used by scripts, jobs and other services).
"""
