"""HTTP routers for the notification service."""
