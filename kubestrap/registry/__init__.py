"""Talk to a running Harbor registry through its REST API."""
