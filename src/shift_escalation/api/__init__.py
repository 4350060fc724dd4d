"""API routers: shift escalation, Twilio webhooks and health checks."""
