"""Rachel — persistent task scheduler."""
