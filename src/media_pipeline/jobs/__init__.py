"""Job submission, queueing and worker execution."""
