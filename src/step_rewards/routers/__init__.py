"""HTTP routers for the step rewards API."""
