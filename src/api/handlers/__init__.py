"""Business handlers served behind the per-handler telemetry middleware."""
