"""External integrations for rx-caller."""
