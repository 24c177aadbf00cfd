"""rankquest: progression engine for a gamified learning product."""
