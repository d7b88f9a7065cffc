"""Call-context helpers for correlating log lines."""
