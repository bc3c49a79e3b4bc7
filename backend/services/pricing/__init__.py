"""Cost model and quality tiers."""
