"""Batch creation, progress reads, cancellation and review."""
