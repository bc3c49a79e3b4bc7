"""Configuration, logging, errors, enums and API models shared by every service."""
