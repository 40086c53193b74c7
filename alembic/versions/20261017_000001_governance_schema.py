"""Governance schema — risks, controls, tolerances, breaches.

Creates the scoring and appetite-governance tables. The unique constraint
uq_breaches_active_metric is the conflict target of the breach detection
upsert: active_metric_id is NULL once a breach is closed, and NULLs never
conflict, so closed history is unbounded while at most one breach per
metric is active.

Revision ID: governance_001
Revises:
Create Date: 2026-10-17
"""

from alembic import op

# revision identifiers, used by Alembic.
revision = "governance_001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # ──────────────────────────────────────────────────────────────────────
    # 1. Tenant & Appetite
    # ──────────────────────────────────────────────────────────────────────
    op.execute("""
    CREATE TABLE IF NOT EXISTS organizations (
        id              UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        name            VARCHAR(255) NOT NULL,
        slug            VARCHAR(100) UNIQUE NOT NULL,
        created_at      TIMESTAMP DEFAULT (NOW() AT TIME ZONE 'utc')
    )
    """)

    op.execute("""
    CREATE TABLE IF NOT EXISTS appetite_categories (
        id              UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        organization_id UUID NOT NULL REFERENCES organizations(id),
        risk_category   VARCHAR(100) NOT NULL,
        appetite_level  VARCHAR(20) NOT NULL DEFAULT 'MODERATE'
                        CHECK (appetite_level IN ('ZERO', 'LOW', 'MODERATE', 'HIGH')),
        materiality_threshold INTEGER,
        rationale       TEXT,
        created_at      TIMESTAMP DEFAULT (NOW() AT TIME ZONE 'utc'),
        updated_at      TIMESTAMP DEFAULT (NOW() AT TIME ZONE 'utc'),
        CONSTRAINT uq_appetite_category UNIQUE (organization_id, risk_category)
    )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS ix_appetite_categories_org ON appetite_categories(organization_id)")

    # ──────────────────────────────────────────────────────────────────────
    # 2. Risks & Controls
    # ──────────────────────────────────────────────────────────────────────
    op.execute("""
    CREATE TABLE IF NOT EXISTS risks (
        id                      UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        organization_id         UUID NOT NULL REFERENCES organizations(id),
        title                   VARCHAR(500) NOT NULL,
        category                VARCHAR(100),
        status                  VARCHAR(30) NOT NULL DEFAULT 'OPEN',
        inherent_likelihood     INTEGER NOT NULL CHECK (inherent_likelihood BETWEEN 1 AND 5),
        inherent_impact         INTEGER NOT NULL CHECK (inherent_impact BETWEEN 1 AND 5),
        residual_likelihood     INTEGER CHECK (residual_likelihood BETWEEN 1 AND 5),
        residual_impact         INTEGER CHECK (residual_impact BETWEEN 1 AND 5),
        residual_score          INTEGER,
        residual_calculated_at  TIMESTAMP,
        appetite_multiplier     DOUBLE PRECISION,
        appetite_adjusted_score DOUBLE PRECISION,
        out_of_appetite         BOOLEAN NOT NULL DEFAULT FALSE,
        appetite_reason         VARCHAR(40),
        appetite_evaluated_at   TIMESTAMP,
        created_at              TIMESTAMP DEFAULT (NOW() AT TIME ZONE 'utc'),
        updated_at              TIMESTAMP DEFAULT (NOW() AT TIME ZONE 'utc')
    )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS ix_risks_org ON risks(organization_id)")
    op.execute("CREATE INDEX IF NOT EXISTS ix_risks_org_category ON risks(organization_id, category)")

    op.execute("""
    CREATE TABLE IF NOT EXISTS controls (
        id                      UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        organization_id         UUID NOT NULL REFERENCES organizations(id),
        name                    VARCHAR(255) NOT NULL,
        design_score            INTEGER NOT NULL DEFAULT 0 CHECK (design_score BETWEEN 0 AND 3),
        implementation_score    INTEGER NOT NULL DEFAULT 0 CHECK (implementation_score BETWEEN 0 AND 3),
        monitoring_score        INTEGER NOT NULL DEFAULT 0 CHECK (monitoring_score BETWEEN 0 AND 3),
        evaluation_score        INTEGER NOT NULL DEFAULT 0 CHECK (evaluation_score BETWEEN 0 AND 3),
        target                  VARCHAR(20) NOT NULL DEFAULT 'both'
                                CHECK (target IN ('likelihood', 'impact', 'both')),
        assessed_at             TIMESTAMP,
        created_at              TIMESTAMP DEFAULT (NOW() AT TIME ZONE 'utc'),
        updated_at              TIMESTAMP DEFAULT (NOW() AT TIME ZONE 'utc')
    )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS ix_controls_org ON controls(organization_id)")

    op.execute("""
    CREATE TABLE IF NOT EXISTS risk_controls (
        id              UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        organization_id UUID NOT NULL REFERENCES organizations(id),
        risk_id         UUID NOT NULL REFERENCES risks(id) ON DELETE CASCADE,
        control_id      UUID NOT NULL REFERENCES controls(id) ON DELETE CASCADE,
        created_at      TIMESTAMP DEFAULT (NOW() AT TIME ZONE 'utc'),
        CONSTRAINT uq_risk_control UNIQUE (risk_id, control_id)
    )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS ix_risk_controls_control ON risk_controls(control_id)")

    # ──────────────────────────────────────────────────────────────────────
    # 3. Indicators
    # ──────────────────────────────────────────────────────────────────────
    op.execute("""
    CREATE TABLE IF NOT EXISTS kri_definitions (
        id              UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        organization_id UUID NOT NULL REFERENCES organizations(id),
        code            VARCHAR(50) NOT NULL,
        name            VARCHAR(255) NOT NULL,
        unit            VARCHAR(50),
        green_min       DOUBLE PRECISION,
        green_max       DOUBLE PRECISION,
        amber_min       DOUBLE PRECISION,
        amber_max       DOUBLE PRECISION,
        created_at      TIMESTAMP DEFAULT (NOW() AT TIME ZONE 'utc'),
        CONSTRAINT uq_kri_code UNIQUE (organization_id, code)
    )
    """)

    op.execute("""
    CREATE TABLE IF NOT EXISTS kri_observations (
        id              UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        organization_id UUID NOT NULL REFERENCES organizations(id),
        kri_id          UUID NOT NULL REFERENCES kri_definitions(id),
        observed_value  DOUBLE PRECISION NOT NULL,
        observed_at     TIMESTAMP NOT NULL,
        data_quality_ok BOOLEAN NOT NULL DEFAULT TRUE,
        notes           TEXT,
        recorded_by     VARCHAR(255),
        created_at      TIMESTAMP DEFAULT (NOW() AT TIME ZONE 'utc')
    )
    """)
    op.execute("""
    CREATE INDEX IF NOT EXISTS ix_kri_observations_kri_time
        ON kri_observations(organization_id, kri_id, observed_at)
    """)

    # ──────────────────────────────────────────────────────────────────────
    # 4. Tolerances
    # ──────────────────────────────────────────────────────────────────────
    op.execute("""
    CREATE TABLE IF NOT EXISTS tolerance_metrics (
        id                  UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        organization_id     UUID NOT NULL REFERENCES organizations(id),
        category_id         UUID NOT NULL REFERENCES appetite_categories(id),
        name                VARCHAR(255) NOT NULL,
        description         TEXT,
        unit                VARCHAR(50),
        is_active           BOOLEAN NOT NULL DEFAULT TRUE,
        metric_type         VARCHAR(20) NOT NULL
                            CHECK (metric_type IN ('MAXIMUM', 'MINIMUM', 'RANGE', 'DIRECTIONAL')),
        green_min           DOUBLE PRECISION,
        green_max           DOUBLE PRECISION,
        amber_min           DOUBLE PRECISION,
        amber_max           DOUBLE PRECISION,
        directional_config  JSONB,
        breach_rule         VARCHAR(30) NOT NULL DEFAULT 'POINT_IN_TIME'
                            CHECK (breach_rule IN ('POINT_IN_TIME', 'SUSTAINED', 'N_BREACHES')),
        breach_periods      INTEGER CHECK (breach_periods >= 1),
        breach_window_days  INTEGER CHECK (breach_window_days >= 1),
        escalation_rules    JSONB NOT NULL DEFAULT '{}',
        owner_email         VARCHAR(255),
        kri_id              UUID REFERENCES kri_definitions(id),
        linked_at           TIMESTAMP,
        created_at          TIMESTAMP DEFAULT (NOW() AT TIME ZONE 'utc'),
        updated_at          TIMESTAMP DEFAULT (NOW() AT TIME ZONE 'utc')
    )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS ix_tolerance_metrics_org ON tolerance_metrics(organization_id)")
    op.execute("CREATE INDEX IF NOT EXISTS ix_tolerance_metrics_category ON tolerance_metrics(category_id)")
    op.execute("CREATE INDEX IF NOT EXISTS ix_tolerance_metrics_kri ON tolerance_metrics(organization_id, kri_id)")

    op.execute("""
    CREATE TABLE IF NOT EXISTS tolerance_coverage (
        id                  UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        organization_id     UUID NOT NULL REFERENCES organizations(id),
        metric_id           UUID NOT NULL REFERENCES tolerance_metrics(id) ON DELETE CASCADE,
        kri_id              UUID NOT NULL REFERENCES kri_definitions(id) ON DELETE CASCADE,
        coverage_strength   VARCHAR(20) NOT NULL DEFAULT 'secondary'
                            CHECK (coverage_strength IN ('primary', 'secondary', 'supplementary')),
        signal_type         VARCHAR(20) NOT NULL DEFAULT 'concurrent'
                            CHECK (signal_type IN ('leading', 'concurrent', 'lagging')),
        rationale           TEXT,
        created_at          TIMESTAMP DEFAULT (NOW() AT TIME ZONE 'utc'),
        CONSTRAINT uq_tolerance_coverage UNIQUE (metric_id, kri_id)
    )
    """)
    op.execute("""
    CREATE INDEX IF NOT EXISTS ix_tolerance_coverage_org_metric
        ON tolerance_coverage(organization_id, metric_id)
    """)

    # ──────────────────────────────────────────────────────────────────────
    # 5. Breaches
    # ──────────────────────────────────────────────────────────────────────
    op.execute("""
    CREATE TABLE IF NOT EXISTS breaches (
        id                          UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        organization_id             UUID NOT NULL REFERENCES organizations(id),
        metric_id                   UUID NOT NULL REFERENCES tolerance_metrics(id),
        active_metric_id            UUID,
        prior_breach_id             UUID,
        severity                    VARCHAR(10) NOT NULL CHECK (severity IN ('AMBER', 'RED')),
        status                      VARCHAR(20) NOT NULL DEFAULT 'DETECTED'
                                    CHECK (status IN ('DETECTED', 'OPEN', 'ACKNOWLEDGED',
                                                      'IN_PROGRESS', 'RESOLVED', 'BOARD_ACCEPTED')),
        breach_value                DOUBLE PRECISION NOT NULL,
        threshold_value             DOUBLE PRECISION,
        variance_amount             DOUBLE PRECISION,
        variance_pct                DOUBLE PRECISION,
        occurrence_count            INTEGER NOT NULL DEFAULT 1,
        escalated_severity          VARCHAR(10),
        detected_at                 TIMESTAMP NOT NULL,
        last_seen_at                TIMESTAMP NOT NULL,
        acknowledged_at             TIMESTAMP,
        acknowledged_by             VARCHAR(255),
        remediation_plan            TEXT,
        remediation_owner           VARCHAR(255),
        remediation_due_date        TIMESTAMP,
        resolved_at                 TIMESTAMP,
        resolved_by                 VARCHAR(255),
        resolution_notes            TEXT,
        board_accepted_at           TIMESTAMP,
        board_accepted_by           VARCHAR(255),
        board_acceptance_rationale  TEXT,
        exception_valid_until       TIMESTAMP,
        created_at                  TIMESTAMP DEFAULT (NOW() AT TIME ZONE 'utc'),
        updated_at                  TIMESTAMP DEFAULT (NOW() AT TIME ZONE 'utc'),
        CONSTRAINT uq_breaches_active_metric UNIQUE (organization_id, active_metric_id),
        CONSTRAINT ck_breaches_active_slot CHECK (
            (active_metric_id IS NULL AND status IN ('RESOLVED', 'BOARD_ACCEPTED'))
            OR (active_metric_id = metric_id AND status NOT IN ('RESOLVED', 'BOARD_ACCEPTED'))
        )
    )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS ix_breaches_org_status ON breaches(organization_id, status)")
    op.execute("CREATE INDEX IF NOT EXISTS ix_breaches_metric ON breaches(metric_id)")

    op.execute("""
    CREATE TABLE IF NOT EXISTS breach_events (
        id              UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        organization_id UUID NOT NULL REFERENCES organizations(id),
        breach_id       UUID NOT NULL REFERENCES breaches(id) ON DELETE CASCADE,
        event_type      VARCHAR(30) NOT NULL,
        from_status     VARCHAR(20),
        to_status       VARCHAR(20),
        severity        VARCHAR(10),
        actor           VARCHAR(255),
        details         JSONB NOT NULL DEFAULT '{}',
        created_at      TIMESTAMP DEFAULT (NOW() AT TIME ZONE 'utc')
    )
    """)
    op.execute("""
    CREATE INDEX IF NOT EXISTS ix_breach_events_breach
        ON breach_events(organization_id, breach_id, created_at)
    """)

    op.execute("""
    CREATE TABLE IF NOT EXISTS board_exceptions (
        id                      UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        organization_id         UUID NOT NULL REFERENCES organizations(id),
        breach_id               UUID NOT NULL REFERENCES breaches(id),
        metric_id               UUID NOT NULL REFERENCES tolerance_metrics(id),
        pending_breach_id       UUID,
        status                  VARCHAR(20) NOT NULL DEFAULT 'PENDING'
                                CHECK (status IN ('PENDING', 'APPROVED', 'REJECTED', 'EXPIRED')),
        temporary_thresholds    JSONB NOT NULL DEFAULT '{}',
        valid_until             TIMESTAMP NOT NULL,
        rationale               TEXT NOT NULL,
        requested_by            VARCHAR(255),
        requested_at            TIMESTAMP DEFAULT (NOW() AT TIME ZONE 'utc'),
        decided_by              VARCHAR(255),
        decided_at              TIMESTAMP,
        decision_notes          TEXT,
        CONSTRAINT uq_board_exceptions_pending UNIQUE (organization_id, pending_breach_id)
    )
    """)
    op.execute("""
    CREATE INDEX IF NOT EXISTS ix_board_exceptions_metric
        ON board_exceptions(organization_id, metric_id, status)
    """)


def downgrade() -> None:
    drop_order = [
        "board_exceptions", "breach_events", "breaches",
        "tolerance_coverage", "tolerance_metrics",
        "kri_observations", "kri_definitions",
        "risk_controls", "controls", "risks",
        "appetite_categories", "organizations",
    ]
    for tbl in drop_order:
        op.execute(f"DROP TABLE IF EXISTS {tbl} CASCADE")
