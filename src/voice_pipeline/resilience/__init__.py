"""
Protection Against Bursts and Outages.

    - circuit.py: Per-provider circuit breakers
    - rate_limit.py: Per-user, per-operation fixed-window limiter
    - retry.py: Bounded exponential backoff
    - locks.py: Independently lockable keyed state
"""
