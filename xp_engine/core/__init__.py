"""Pure scoring policy: mastery, question outcomes, content types, errors."""
