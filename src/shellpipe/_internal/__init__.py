"""Internal APIs for shellpipe, not covered by versioning policy."""
