"""initial_urna_schema

Revision ID: 7c1d2e3f4a5b
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""

from collections.abc import Sequence

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "7c1d2e3f4a5b"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


SCHEMA_SQL = """
CREATE EXTENSION IF NOT EXISTS "uuid-ossp";

-- ============================================
-- USERS - administrators and booth operators
-- ============================================
CREATE TABLE IF NOT EXISTS users (
    id UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
    name VARCHAR(255) NOT NULL,
    email VARCHAR(255) UNIQUE NOT NULL,
    password_hash TEXT NOT NULL,
    role VARCHAR(20) NOT NULL DEFAULT 'operator' CHECK (role IN ('admin', 'operator')),
    active BOOLEAN NOT NULL DEFAULT TRUE,
    last_login TIMESTAMP WITH TIME ZONE,
    created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP
);

-- ============================================
-- ELECTIONS
-- ============================================
CREATE TABLE IF NOT EXISTS elections (
    id UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
    title VARCHAR(255) NOT NULL,
    description TEXT,
    start_date TIMESTAMP WITH TIME ZONE NOT NULL,
    end_date TIMESTAMP WITH TIME ZONE NOT NULL,
    status VARCHAR(20) NOT NULL DEFAULT 'created'
        CHECK (status IN ('created', 'active', 'finished', 'cancelled')),
    created_by UUID REFERENCES users(id) ON DELETE SET NULL,
    created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP,
    CONSTRAINT valid_election_dates CHECK (end_date > start_date)
);

CREATE INDEX IF NOT EXISTS idx_elections_status ON elections(status);

-- ============================================
-- BOOTHS (urnas)
-- ============================================
CREATE TABLE IF NOT EXISTS booths (
    id UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
    number VARCHAR(50) UNIQUE NOT NULL,
    location VARCHAR(255) NOT NULL,
    status VARCHAR(20) NOT NULL DEFAULT 'active'
        CHECK (status IN ('active', 'inactive', 'maintenance')),
    ip_address INET,
    election_id UUID REFERENCES elections(id) ON DELETE SET NULL,
    last_ping TIMESTAMP WITH TIME ZONE,
    created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP
);

CREATE INDEX IF NOT EXISTS idx_booths_election ON booths(election_id);

-- ============================================
-- CANDIDATES
-- ============================================
CREATE TABLE IF NOT EXISTS candidates (
    id UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
    election_id UUID NOT NULL REFERENCES elections(id) ON DELETE CASCADE,
    number VARCHAR(10) NOT NULL,
    name VARCHAR(255) NOT NULL,
    party VARCHAR(100) NOT NULL,
    photo_url VARCHAR(500),
    created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP,
    CONSTRAINT uq_candidates_number UNIQUE (election_id, number),
    CONSTRAINT uq_candidates_id_election UNIQUE (id, election_id)
);

-- ============================================
-- VOTERS
-- ============================================
CREATE TABLE IF NOT EXISTS voters (
    id UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
    election_id UUID NOT NULL REFERENCES elections(id) ON DELETE CASCADE,
    registration_number VARCHAR(50) NOT NULL,
    name VARCHAR(255) NOT NULL,
    cpf VARCHAR(11) NOT NULL,
    email VARCHAR(255),
    phone VARCHAR(20),
    has_voted BOOLEAN NOT NULL DEFAULT FALSE,
    voted_at TIMESTAMP WITH TIME ZONE,
    booth_id UUID REFERENCES booths(id) ON DELETE SET NULL,
    created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP,
    CONSTRAINT uq_voters_registration UNIQUE (election_id, registration_number),
    CONSTRAINT uq_voters_cpf UNIQUE (election_id, cpf),
    CONSTRAINT voted_at_matches_flag CHECK (has_voted = (voted_at IS NOT NULL))
);

CREATE INDEX IF NOT EXISTS idx_voters_has_voted ON voters(election_id, has_voted);

-- ============================================
-- VOTES - append-only ledger, one row per voter per election
-- ============================================
CREATE TABLE IF NOT EXISTS votes (
    id UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
    election_id UUID NOT NULL REFERENCES elections(id) ON DELETE RESTRICT,
    voter_id UUID NOT NULL REFERENCES voters(id) ON DELETE RESTRICT,
    voter_registration_number VARCHAR(50) NOT NULL,
    candidate_id UUID,
    vote_kind VARCHAR(20) NOT NULL CHECK (vote_kind IN ('candidate', 'null_vote', 'blank')),
    verification_hash VARCHAR(64) NOT NULL UNIQUE,
    booth_id UUID REFERENCES booths(id) ON DELETE SET NULL,
    created_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT CURRENT_TIMESTAMP,
    CONSTRAINT uq_votes_voter_election UNIQUE (voter_id, election_id),
    CONSTRAINT fk_votes_candidate_election FOREIGN KEY (candidate_id, election_id)
        REFERENCES candidates(id, election_id) ON DELETE RESTRICT,
    CONSTRAINT candidate_matches_kind CHECK (
        (vote_kind = 'candidate') = (candidate_id IS NOT NULL)
    )
);

CREATE INDEX IF NOT EXISTS idx_votes_election_kind ON votes(election_id, vote_kind);
CREATE INDEX IF NOT EXISTS idx_votes_booth ON votes(booth_id);

-- ============================================
-- AUDIT LOGS
-- ============================================
CREATE TABLE IF NOT EXISTS audit_logs (
    id UUID PRIMARY KEY DEFAULT uuid_generate_v4(),
    user_id UUID REFERENCES users(id) ON DELETE SET NULL,
    action VARCHAR(100) NOT NULL,
    table_name VARCHAR(100),
    record_id UUID,
    old_data JSONB,
    new_data JSONB,
    ip_address INET,
    user_agent TEXT,
    created_at TIMESTAMP WITH TIME ZONE DEFAULT CURRENT_TIMESTAMP
);

CREATE INDEX IF NOT EXISTS idx_audit_logs_user ON audit_logs(user_id);
CREATE INDEX IF NOT EXISTS idx_audit_logs_created_at ON audit_logs(created_at);
CREATE INDEX IF NOT EXISTS idx_audit_logs_action ON audit_logs(action);
"""


def upgrade() -> None:
    """Create the election, registry, ballot ledger and audit tables."""
    op.execute(SCHEMA_SQL)


def downgrade() -> None:
    """Drop all tables in reverse order of dependencies."""
    op.execute("""
    DROP TABLE IF EXISTS audit_logs CASCADE;
    DROP TABLE IF EXISTS votes CASCADE;
    DROP TABLE IF EXISTS voters CASCADE;
    DROP TABLE IF EXISTS candidates CASCADE;
    DROP TABLE IF EXISTS booths CASCADE;
    DROP TABLE IF EXISTS elections CASCADE;
    DROP TABLE IF EXISTS users CASCADE;
    """)
