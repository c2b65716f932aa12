"""FastAPI interface of the notification engine."""
