"""Personal-automation harness: classify, queue and run agent tasks."""

__version__ = "0.1.0"
