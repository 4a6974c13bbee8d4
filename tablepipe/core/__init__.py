"""Pipeline engine, data model and shared runtime pieces."""
