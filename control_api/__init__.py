"""
Control API for the journal core.

Read access to entries, entitlement and diagnostic events, plus the
billing webhook that turns payment events into premium state.
"""
