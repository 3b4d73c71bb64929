"""Document format: decoration layout and the versioned schema registry."""
