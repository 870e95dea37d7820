"""XP scoring and banking."""
