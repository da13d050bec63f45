"""Run execution: records, cancellation, executor and the service facade."""
