"""Services: hashing, file-system access, settings, progress and orchestration."""
