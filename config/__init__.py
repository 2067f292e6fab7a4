"""Static reference data: skill taxonomy and capability framework."""
