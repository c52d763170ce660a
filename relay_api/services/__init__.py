"""Services that talk to the backend and the webhook, and sequence task submission."""
