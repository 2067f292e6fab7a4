"""Staged job ingestion: DB models, storage ports, pipelines.

This package resolves entities by natural key, versions job postings,
ingests attached documents, links roles to skills and capabilities, and
canonicalises roles onto general roles, all against the staging store.
"""
