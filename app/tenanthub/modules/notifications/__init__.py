"""
In-app notifications with per-user preferences (opt-out, quiet hours) and
versioned, localized templates.
"""
