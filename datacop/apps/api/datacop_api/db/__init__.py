"""Entity store: ORM models, engine/session wiring, repositories."""
