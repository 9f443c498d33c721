"""
Ingestion pipeline: source adapters, the per-record stages and the run orchestrator.

Import the submodules directly, e.g.
`from event_ingestion.ingestion.orchestrator import IngestionOrchestrator`.
"""
