"""Global write-phase lock coordination."""
