"""Live call status updates published for dashboards."""
