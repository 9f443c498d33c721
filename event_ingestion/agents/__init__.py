"""Remote AI services used by the pipeline."""
