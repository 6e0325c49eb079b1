"""Leave accounting and approval engine."""
