"""rx-caller: outbound pharmacy outreach calls with lifecycle tracking and retries."""

__version__ = "0.1.0"
