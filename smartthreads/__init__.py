"""SmartThreads: team chat with LLM-assisted categorization and summaries."""

__version__ = "0.1.0"
