"""
Durable review job queue.

This package provides a crash-safe job system with:
- Postgres-backed store with atomic single-winner claims
- Global and per-installation concurrency ceilings
- Startup recovery of jobs orphaned by a crash
- Idempotent submission and bounded retries with backoff
"""
