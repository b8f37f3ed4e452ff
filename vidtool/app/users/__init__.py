"""Directory user lookup through Microsoft Graph."""
