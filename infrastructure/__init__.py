"""Infrastructure for the Athena federated query connector to RDS PostgreSQL."""
