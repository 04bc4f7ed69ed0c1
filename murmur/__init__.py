"""
murmur: anonymous inbox backend.

Users register, create groups (public inboxes addressed by a slug) and receive
anonymous messages from anyone holding the link. The package contains a FastAPI
application, storage abstractions (in-memory and SQLAlchemy) and the policy
layer that keeps slugs unique and plan quotas honest.
"""
