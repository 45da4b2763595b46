"""CineMatch application package: models, ranking, services and the HTTP surface."""
