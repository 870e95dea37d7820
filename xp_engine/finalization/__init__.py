"""Assessment finalization."""
