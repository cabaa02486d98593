"""SQLAlchemy persistence for sessions, AI configuration and job history."""
