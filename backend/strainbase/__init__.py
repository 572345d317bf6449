"""Cannabis strain catalog: schema-guarded migrations and strain reconciliation."""
