"""Daily drawing contest API."""
