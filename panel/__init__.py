"""
Crewboard panel — IO and orchestration around the roster kernel.

  datasource       — backend collaborator interface + in-memory backend
  postgres_source  — the same interface over asyncpg, LISTEN/NOTIFY change feed
  coordinator      — create / rename / delete / assign / search per kind
  reconciler       — merges the change feed into the entity stores
  auth             — session gate against the hosted auth service
  workspace        — the facade the UI layer reads from and calls into
"""
