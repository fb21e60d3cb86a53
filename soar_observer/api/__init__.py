"""HTTP query API."""
