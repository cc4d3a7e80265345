"""Services shared by the API and the sync workers."""
