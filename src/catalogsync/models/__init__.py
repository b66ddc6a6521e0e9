"""Data models — records, index documents, search intents, and responses."""
