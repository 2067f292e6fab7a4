"""Collaborator adapters: embeddings, text analysis service, taxonomy analyzer."""
