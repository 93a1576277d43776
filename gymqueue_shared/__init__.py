"""Storage layer shared by the queue API and its background workers."""
