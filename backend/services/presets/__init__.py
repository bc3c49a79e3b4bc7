"""Method and image preset resolution."""
