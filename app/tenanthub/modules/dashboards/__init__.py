"""
Meta-driven dashboards: versioned JSON layouts, ACLs, forks of system dashboards,
and tiered resolution (user > tenant fork > tenant > system > fallback).
"""
