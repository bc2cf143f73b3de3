"""Queue-driven container image builder with blue/green rollouts."""
