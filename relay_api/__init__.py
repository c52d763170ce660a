"""
PURPOSE: Relay gateway bridging a synchronous HTTP client to a streaming (text/event-stream) backend
SRP and DRY check: Pass - package marker, the HTTP app lives in relay_api.api
"""
