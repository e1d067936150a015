"""HTTP API for rx-caller."""
