"""Generation, validation, repair and quality components."""
