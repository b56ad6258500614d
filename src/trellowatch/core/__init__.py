"""Core modules for the trello-watch controllers."""
