"""
connectors — ServiceM8 OAuth credential lifecycle.

Handles:
  • Auth-URL generation with single-use state nonces
  • Code → token exchange
  • Per-user token storage & auto-refresh (one refresh in flight per user)
  • AES-256-GCM encryption of tokens at rest
  • Disconnect
"""
