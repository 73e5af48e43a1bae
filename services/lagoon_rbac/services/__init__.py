"""Migration components: key material, group upsert, default users, reconciliation."""
