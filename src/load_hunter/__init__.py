"""Load Hunter: matches incoming freight loads against per-vehicle hunt plans."""
