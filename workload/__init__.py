"""Sample HTTP workload scaled by the autoscaler."""
