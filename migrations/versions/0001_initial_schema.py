"""Initial schema: complaints, extension requests, lifecycle events, snapshots.

Revision ID: 0001
Revises:     (none)
Create Date: 2024-03-01
"""

revision = "0001"
down_revision = None
branch_labels = None
depends_on = None

from alembic import op


def upgrade() -> None:
    # ---------------------------------------------------------------------- #
    # Enable pgcrypto for gen_random_uuid()                                   #
    # ---------------------------------------------------------------------- #
    op.execute('CREATE EXTENSION IF NOT EXISTS "pgcrypto"')

    # ------------------------------------------------------------------ #
    # users  (local mirror of identity accounts)                          #
    # ------------------------------------------------------------------ #
    op.execute("""
        CREATE TABLE users (
            id                   UUID         NOT NULL DEFAULT gen_random_uuid(),
            cognito_user_id      VARCHAR(200) NOT NULL,
            full_name            VARCHAR(200) NOT NULL,
            email                VARCHAR(200),
            role                 VARCHAR(20)  NOT NULL,
            designation          VARCHAR(200),
            responsible_district VARCHAR(50),
            is_active            BOOLEAN      NOT NULL DEFAULT TRUE,
            created_at           TIMESTAMP    NOT NULL DEFAULT NOW(),
            CONSTRAINT pk_users PRIMARY KEY (id),
            CONSTRAINT uq_users_cognito UNIQUE (cognito_user_id),
            CONSTRAINT chk_users_role CHECK (role IN ('admin', 'officer', 'citizen'))
        )
    """)

    # ------------------------------------------------------------------ #
    # geo_areas  (district → subdistrict → village)                       #
    # ------------------------------------------------------------------ #
    op.execute("""
        CREATE TABLE geo_areas (
            code        VARCHAR(50)  NOT NULL,
            name        VARCHAR(200) NOT NULL,
            entity_type VARCHAR(20)  NOT NULL,
            parent_code VARCHAR(50),
            CONSTRAINT pk_geo_areas PRIMARY KEY (code),
            CONSTRAINT fk_geo_areas_parent FOREIGN KEY (parent_code)
                REFERENCES geo_areas (code),
            CONSTRAINT chk_geo_areas_type CHECK (
                entity_type IN ('district', 'subdistrict', 'village')
            )
        )
    """)

    # ------------------------------------------------------------------ #
    # complaint_sequence  (daily counter behind complaint_code)           #
    # ------------------------------------------------------------------ #
    op.execute("""
        CREATE TABLE complaint_sequence (
            day      DATE NOT NULL,
            last_seq INT  NOT NULL DEFAULT 0,
            CONSTRAINT pk_complaint_sequence PRIMARY KEY (day)
        )
    """)

    # ------------------------------------------------------------------ #
    # complaints                                                           #
    # ------------------------------------------------------------------ #
    op.execute("""
        CREATE TABLE complaints (
            id                  UUID             NOT NULL DEFAULT gen_random_uuid(),
            complaint_code      VARCHAR(20)      NOT NULL,
            title               VARCHAR(255)     NOT NULL,
            description         TEXT             NOT NULL,
            category            VARCHAR(30)      NOT NULL,
            sub_category        VARCHAR(100),
            priority            VARCHAR(10)      NOT NULL DEFAULT 'medium',
            status              VARCHAR(20)      NOT NULL DEFAULT 'pending',
            location            VARCHAR(500),
            district_code       VARCHAR(50)      NOT NULL,
            district_name       VARCHAR(100)     NOT NULL,
            subdistrict_code    VARCHAR(50),
            subdistrict_name    VARCHAR(100)     NOT NULL,
            village_code        VARCHAR(50),
            village_name        VARCHAR(200),
            latitude            DOUBLE PRECISION NOT NULL,
            longitude           DOUBLE PRECISION NOT NULL,
            contact_name        VARCHAR(100)     NOT NULL,
            contact_email       VARCHAR(200)     NOT NULL,
            contact_phone       VARCHAR(20),
            assigned_officer_id UUID,
            is_officer_assigned BOOLEAN          NOT NULL DEFAULT FALSE,
            arrival_time        TIMESTAMP,
            assigned_time       TIMESTAMP,
            time_boundary       INT              NOT NULL DEFAULT 7,
            is_extended         BOOLEAN          NOT NULL DEFAULT FALSE,
            is_complaint_closed BOOLEAN          NOT NULL DEFAULT FALSE,
            closing_details     JSONB,
            closed_at           TIMESTAMP,
            created_by_user_id  UUID,
            event_seq           INT              NOT NULL DEFAULT 0,
            version             INT              NOT NULL,
            created_at          TIMESTAMP        NOT NULL DEFAULT NOW(),
            updated_at          TIMESTAMP        NOT NULL DEFAULT NOW(),
            CONSTRAINT pk_complaints PRIMARY KEY (id),
            CONSTRAINT uq_complaints_code UNIQUE (complaint_code),
            CONSTRAINT fk_complaints_assigned_officer FOREIGN KEY (assigned_officer_id)
                REFERENCES users (id),
            CONSTRAINT chk_complaints_status CHECK (
                status IN ('pending', 'in_progress', 'resolved', 'rejected')
            ),
            CONSTRAINT chk_complaints_priority CHECK (
                priority IN ('low', 'medium', 'high', 'urgent')
            ),
            CONSTRAINT chk_complaints_time_boundary CHECK (time_boundary >= 1),
            CONSTRAINT chk_complaints_closed CHECK (
                NOT is_complaint_closed OR status IN ('resolved', 'rejected')
            )
        )
    """)

    # ------------------------------------------------------------------ #
    # complaint_notes / complaint_attachments                              #
    # ------------------------------------------------------------------ #
    op.execute("""
        CREATE TABLE complaint_notes (
            id           UUID         NOT NULL DEFAULT gen_random_uuid(),
            complaint_id UUID         NOT NULL,
            note         TEXT         NOT NULL,
            author_id    UUID,
            author_role  VARCHAR(20)  NOT NULL,
            author_name  VARCHAR(200),
            created_at   TIMESTAMP    NOT NULL DEFAULT NOW(),
            CONSTRAINT pk_complaint_notes PRIMARY KEY (id),
            CONSTRAINT fk_complaint_notes_complaint FOREIGN KEY (complaint_id)
                REFERENCES complaints (id) ON DELETE CASCADE
        )
    """)
    op.execute("""
        CREATE TABLE complaint_attachments (
            id                  UUID         NOT NULL DEFAULT gen_random_uuid(),
            complaint_id        UUID         NOT NULL,
            storage_key         VARCHAR(500) NOT NULL,
            file_name           VARCHAR(255),
            content_type        VARCHAR(100),
            file_size_bytes     INT,
            uploaded_by_user_id UUID,
            uploaded_at         TIMESTAMP    NOT NULL DEFAULT NOW(),
            CONSTRAINT pk_complaint_attachments PRIMARY KEY (id),
            CONSTRAINT fk_complaint_attachments_complaint FOREIGN KEY (complaint_id)
                REFERENCES complaints (id) ON DELETE CASCADE
        )
    """)

    # ------------------------------------------------------------------ #
    # extension_requests                                                   #
    # ------------------------------------------------------------------ #
    op.execute("""
        CREATE TABLE extension_requests (
            id                UUID        NOT NULL DEFAULT gen_random_uuid(),
            complaint_id      UUID        NOT NULL,
            requested_by      UUID,
            requested_by_role VARCHAR(20) NOT NULL,
            days_requested    INT         NOT NULL,
            reason            TEXT,
            status            VARCHAR(20) NOT NULL DEFAULT 'pending',
            decided_by        UUID,
            decided_by_role   VARCHAR(20),
            decided_at        TIMESTAMP,
            notes             TEXT,
            created_at        TIMESTAMP   NOT NULL DEFAULT NOW(),
            updated_at        TIMESTAMP   NOT NULL DEFAULT NOW(),
            CONSTRAINT pk_extension_requests PRIMARY KEY (id),
            CONSTRAINT fk_extension_requests_complaint FOREIGN KEY (complaint_id)
                REFERENCES complaints (id) ON DELETE CASCADE,
            CONSTRAINT chk_extension_requests_status CHECK (
                status IN ('pending', 'approved', 'rejected')
            ),
            CONSTRAINT chk_extension_requests_days CHECK (days_requested >= 1)
        )
    """)

    # ------------------------------------------------------------------ #
    # lifecycle_events  (timeline + notification outbox)                  #
    # ------------------------------------------------------------------ #
    op.execute("""
        CREATE TABLE lifecycle_events (
            id           UUID         NOT NULL DEFAULT gen_random_uuid(),
            complaint_id UUID         NOT NULL,
            sequence     INT          NOT NULL,
            event_type   VARCHAR(50)  NOT NULL,
            actor_id     UUID,
            actor_role   VARCHAR(20)  NOT NULL,
            actor_name   VARCHAR(200),
            occurred_at  TIMESTAMP    NOT NULL,
            payload      JSONB        NOT NULL DEFAULT '{}'::jsonb,
            CONSTRAINT pk_lifecycle_events PRIMARY KEY (id),
            CONSTRAINT fk_lifecycle_events_complaint FOREIGN KEY (complaint_id)
                REFERENCES complaints (id) ON DELETE CASCADE,
            CONSTRAINT uq_lifecycle_events_complaint_seq UNIQUE (complaint_id, sequence)
        )
    """)

    # ------------------------------------------------------------------ #
    # complaint_snapshots  (append-only; no uniqueness on the key)        #
    # ------------------------------------------------------------------ #
    op.execute("""
        CREATE TABLE complaint_snapshots (
            id               SERIAL       NOT NULL,
            entity_type      VARCHAR(20)  NOT NULL,
            entity_code      VARCHAR(50)  NOT NULL,
            entity_name      VARCHAR(200) NOT NULL,
            snapshot_date    DATE         NOT NULL,
            period           VARCHAR(10)  NOT NULL,
            total_complaints INT          NOT NULL DEFAULT 0,
            by_status        JSONB        NOT NULL DEFAULT '{}'::jsonb,
            by_category      JSONB        NOT NULL DEFAULT '{}'::jsonb,
            created_at       TIMESTAMP    NOT NULL DEFAULT NOW(),
            CONSTRAINT pk_complaint_snapshots PRIMARY KEY (id),
            CONSTRAINT chk_complaint_snapshots_type CHECK (
                entity_type IN ('district', 'subdistrict', 'village')
            ),
            CONSTRAINT chk_complaint_snapshots_period CHECK (
                period IN ('daily', 'weekly', 'monthly')
            )
        )
    """)

    # ------------------------------------------------------------------ #
    # Indexes                                                              #
    # ------------------------------------------------------------------ #

    # complaints: list filters
    op.execute("CREATE INDEX idx_complaints_status_priority ON complaints (status, priority)")
    op.execute("CREATE INDEX idx_complaints_category_status ON complaints (category, status)")
    op.execute(
        "CREATE INDEX idx_complaints_officer_status ON complaints (assigned_officer_id, status)"
    )
    op.execute("CREATE INDEX idx_complaints_district ON complaints (district_code)")
    op.execute("CREATE INDEX idx_complaints_subdistrict ON complaints (subdistrict_code)")
    op.execute("CREATE INDEX idx_complaints_village ON complaints (village_code)")

    op.execute("CREATE INDEX ix_geo_areas_parent_code ON geo_areas (parent_code)")
    op.execute("CREATE INDEX ix_complaint_notes_complaint_id ON complaint_notes (complaint_id)")
    op.execute(
        "CREATE INDEX ix_complaint_attachments_complaint_id ON complaint_attachments (complaint_id)"
    )

    # extension_requests: at most one pending request per complaint
    op.execute("""
        CREATE UNIQUE INDEX uq_extension_requests_one_pending
        ON extension_requests (complaint_id)
        WHERE status = 'pending'
    """)
    op.execute("""
        CREATE INDEX idx_extension_requests_complaint_status
        ON extension_requests (complaint_id, status, created_at)
    """)

    # lifecycle_events: outbox replay
    op.execute("CREATE INDEX ix_lifecycle_events_event_type ON lifecycle_events (event_type)")
    op.execute("CREATE INDEX ix_lifecycle_events_occurred_at ON lifecycle_events (occurred_at)")

    # complaint_snapshots: history lookups
    op.execute("""
        CREATE INDEX idx_complaint_snapshots_key
        ON complaint_snapshots (entity_type, entity_code, period, snapshot_date)
    """)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS complaint_snapshots CASCADE")
    op.execute("DROP TABLE IF EXISTS lifecycle_events CASCADE")
    op.execute("DROP TABLE IF EXISTS extension_requests CASCADE")
    op.execute("DROP TABLE IF EXISTS complaint_attachments CASCADE")
    op.execute("DROP TABLE IF EXISTS complaint_notes CASCADE")
    op.execute("DROP TABLE IF EXISTS complaints CASCADE")
    op.execute("DROP TABLE IF EXISTS complaint_sequence CASCADE")
    op.execute("DROP TABLE IF EXISTS geo_areas CASCADE")
    op.execute("DROP TABLE IF EXISTS users CASCADE")
