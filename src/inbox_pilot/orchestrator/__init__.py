"""Task orchestration engine: classification, queueing, execution and audit."""
