"""Processing workers: claim jobs from the queue, run them, report results."""
