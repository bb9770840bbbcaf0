"""
MindPebbles journal core.

Insight pipeline, conversation orchestrator, persona creation workflow,
entitlement gate and the identity-scoped entry store.
"""
