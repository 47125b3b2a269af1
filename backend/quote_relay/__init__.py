"""Quote relay: live quote pipeline from an upstream feed to browser subscribers."""
