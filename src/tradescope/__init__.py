"""Market opportunity scanner with a time-controlled sandbox trading simulator."""
