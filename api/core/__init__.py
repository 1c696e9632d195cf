"""
Shared, cross-cutting code for the API.

`core/` holds the small building blocks every feature uses (settings, logging,
the DB pool, schema migrations, domain errors). Keep resource-specific SQL and
business logic in the corresponding feature package (e.g. `users/`).
"""
