"""Services for the Docker task runner."""
