"""
Voice Profile Handling.

    - cache.py: Read-through TTL cache for voice profiles
    - router.py: Pure provider selection from loaded profile metadata
"""
