"""valora.api: Read-only HTTP API over the quote store."""
