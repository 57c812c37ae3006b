"""Live process-monitoring dashboard daemon."""
