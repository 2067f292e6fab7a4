"""Pipeline components for one batch of processed records.

Each component is callable on its own; ``BatchOrchestrator`` wires them
together per record (see ``etl.pipelines.batch``).
"""
