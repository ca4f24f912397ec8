"""Auth module: account signup and credential verification."""
