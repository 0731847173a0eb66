"""Engine components: aggregation, reporting and scheduling."""
