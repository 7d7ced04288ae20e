"""HTTP surface for exam sessions."""
