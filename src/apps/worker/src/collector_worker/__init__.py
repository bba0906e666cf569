"""RQ worker running collection job loops."""
