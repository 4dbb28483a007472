"""Contract SMS sending and reply-confirmation service."""
