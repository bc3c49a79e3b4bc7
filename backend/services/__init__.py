"""Service packages: batch lifecycle, worker, billing, pricing, presets and providers."""
