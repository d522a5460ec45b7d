"""Goal-directed browser pilot."""
