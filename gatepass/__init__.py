"""Campus gate pass backend."""
