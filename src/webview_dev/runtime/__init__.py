"""Host-side runtime: platform facts, environment, subprocess helpers."""
