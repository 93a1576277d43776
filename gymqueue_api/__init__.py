"""HTTP API for gym equipment waitlists."""
