"""Services for previewctl."""
