"""Business features built on the event bus."""
