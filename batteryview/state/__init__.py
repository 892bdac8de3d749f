"""Session state, actions and reducer."""
