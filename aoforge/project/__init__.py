"""Project-level collaborators: reading ao.config.yml and locating projects."""
