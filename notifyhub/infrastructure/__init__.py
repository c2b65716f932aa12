"""Infrastructure layer: persistence, delivery channels and gateway adapters."""
