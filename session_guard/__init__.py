"""Session security service: access tokens, rotating refresh tokens, reuse detection."""
