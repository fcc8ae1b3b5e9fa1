"""PSM preprocessing and the filterable identification store."""
