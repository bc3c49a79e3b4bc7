"""Stage provider contracts, drivers and the driver registry."""
