"""
RiskGov — Risk Scoring & Appetite Governance Engine.

Architecture:
- scoring/    — DIME control effectiveness and residual risk
- appetite/   — tolerance evaluation, breach lifecycle, coverage, status rollups
- db/         — async SQLAlchemy models, engine, per-organization locks
- api/        — FastAPI routers
- middleware/ — error handling, request context, tenant extraction
"""

__version__ = "1.0.0"
