"""External messaging integrations (SMS and voice)."""
