"""Domain services. Each receives a database session and, where it broadcasts, an event bus."""
