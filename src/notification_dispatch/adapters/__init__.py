"""Port implementations: in-memory, SQLAlchemy, Redis and RabbitMQ.

Only the in-memory adapters are imported eagerly; the others pull in their
driver libraries and are imported from their own subpackages.
"""
