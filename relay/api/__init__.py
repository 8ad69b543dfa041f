"""HTTP blueprints: auth, crm, health, error handlers and the bearer-token gate."""
