"""pkm_portal.blueprints — HTTP boundary. No business logic lives here."""
