"""Feed synchronization and live notification service."""
