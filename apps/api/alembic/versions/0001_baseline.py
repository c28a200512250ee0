"""Baseline migration - users, companions, appointments, earnings, reviews

Revision ID: 0001_baseline
Revises:
Create Date: 2026-10-19

Creates the booking schema, including the exclusion constraint that keeps
non-cancelled appointments of one companion from overlapping.
"""
from typing import Sequence, Union

from alembic import op


# revision identifiers, used by Alembic.
revision: str = '0001_baseline'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create booking tables."""

    # ==========================================================================
    # Enable required extensions
    # ==========================================================================
    op.execute('CREATE EXTENSION IF NOT EXISTS pgcrypto')    # For gen_random_uuid()
    op.execute('CREATE EXTENSION IF NOT EXISTS btree_gist')  # For uuid = in EXCLUDE

    # ==========================================================================
    # Users
    # ==========================================================================
    op.execute('''
        CREATE TABLE users (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            email VARCHAR(255) UNIQUE NOT NULL,
            name VARCHAR(255),
            role VARCHAR(20) NOT NULL DEFAULT 'user',
            is_active BOOLEAN NOT NULL DEFAULT true,
            token_version INTEGER NOT NULL DEFAULT 1,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    ''')

    # ==========================================================================
    # Human companions
    # ==========================================================================
    op.execute('''
        CREATE TABLE human_companions (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            user_id UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            display_name VARCHAR(100) NOT NULL,
            bio TEXT,
            avatar VARCHAR(500),
            price_per_hour INTEGER NOT NULL,
            currency VARCHAR(3) NOT NULL DEFAULT 'GBP',
            minimum_duration INTEGER NOT NULL DEFAULT 30,
            timezone VARCHAR(50) NOT NULL DEFAULT 'Europe/London',
            details JSONB NOT NULL DEFAULT '{}'::jsonb,
            is_active BOOLEAN NOT NULL DEFAULT true,
            is_available BOOLEAN NOT NULL DEFAULT true,
            is_verified BOOLEAN NOT NULL DEFAULT false,
            calendar_sync_enabled BOOLEAN NOT NULL DEFAULT false,
            rating DOUBLE PRECISION,
            review_count INTEGER NOT NULL DEFAULT 0,
            total_bookings INTEGER NOT NULL DEFAULT 0,
            total_earnings INTEGER NOT NULL DEFAULT 0,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            CONSTRAINT uq_human_companion_user UNIQUE (user_id),
            CONSTRAINT ck_companion_price_non_negative CHECK (price_per_hour >= 0),
            CONSTRAINT ck_companion_min_duration_positive CHECK (minimum_duration > 0)
        )
    ''')
    op.execute('CREATE INDEX idx_human_companions_active ON human_companions(is_active, is_verified)')

    op.execute('''
        CREATE TABLE calendar_integrations (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            companion_id UUID NOT NULL REFERENCES human_companions(id) ON DELETE CASCADE,
            calendar_id VARCHAR(255) NOT NULL DEFAULT 'primary',
            access_token TEXT,
            refresh_token TEXT,
            token_expires_at TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            CONSTRAINT uq_calendar_integration_companion UNIQUE (companion_id)
        )
    ''')

    # ==========================================================================
    # Appointments
    # ==========================================================================
    op.execute('''
        CREATE TABLE appointments (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            user_id UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            companion_id UUID NOT NULL REFERENCES human_companions(id) ON DELETE CASCADE,
            start_time TIMESTAMPTZ NOT NULL,
            end_time TIMESTAMPTZ NOT NULL,
            duration_minutes INTEGER NOT NULL,
            timezone VARCHAR(50) NOT NULL,
            meeting_type VARCHAR(20) NOT NULL DEFAULT 'video_call',
            meeting_link VARCHAR(500),
            notes TEXT,
            status VARCHAR(20) NOT NULL DEFAULT 'pending',
            amount INTEGER NOT NULL,
            currency VARCHAR(3) NOT NULL,
            payment_status VARCHAR(20) NOT NULL DEFAULT 'pending',
            payment_intent_id VARCHAR(255),
            refund_amount INTEGER,
            cancelled_at TIMESTAMPTZ,
            cancelled_by VARCHAR(20),
            cancellation_reason TEXT,
            completed_at TIMESTAMPTZ,
            user_rating INTEGER,
            user_review TEXT,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            CONSTRAINT uq_appointment_payment_intent UNIQUE (payment_intent_id),
            CONSTRAINT ck_appointment_range CHECK (end_time > start_time),
            CONSTRAINT ck_appointment_duration_positive CHECK (duration_minutes > 0),
            CONSTRAINT ck_appointment_amount_non_negative CHECK (amount >= 0),
            CONSTRAINT ex_appointments_companion_no_overlap EXCLUDE USING gist (
                companion_id WITH =,
                tstzrange(start_time, end_time, '[)') WITH &&
            ) WHERE (status <> 'cancelled')
        )
    ''')
    op.execute('CREATE INDEX idx_appointments_companion_start ON appointments(companion_id, start_time)')
    op.execute('CREATE INDEX idx_appointments_user_start ON appointments(user_id, start_time)')
    op.execute('CREATE INDEX idx_appointments_status ON appointments(status)')

    # ==========================================================================
    # Earnings and reviews
    # ==========================================================================
    op.execute('''
        CREATE TABLE companion_earnings (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            appointment_id UUID NOT NULL REFERENCES appointments(id) ON DELETE CASCADE,
            companion_id UUID NOT NULL REFERENCES human_companions(id) ON DELETE CASCADE,
            amount INTEGER NOT NULL,
            currency VARCHAR(3) NOT NULL,
            platform_fee INTEGER NOT NULL,
            net_amount INTEGER NOT NULL,
            status VARCHAR(20) NOT NULL DEFAULT 'pending',
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            CONSTRAINT uq_companion_earning_appointment UNIQUE (appointment_id),
            CONSTRAINT ck_companion_earning_conserves_amount CHECK (platform_fee + net_amount = amount)
        )
    ''')
    op.execute(
        'CREATE INDEX idx_companion_earnings_companion_status '
        'ON companion_earnings(companion_id, status)'
    )

    op.execute('''
        CREATE TABLE companion_reviews (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            appointment_id UUID NOT NULL REFERENCES appointments(id) ON DELETE CASCADE,
            companion_id UUID NOT NULL REFERENCES human_companions(id) ON DELETE CASCADE,
            user_id UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            rating INTEGER NOT NULL,
            review_text TEXT,
            is_public BOOLEAN NOT NULL DEFAULT true,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            CONSTRAINT uq_companion_review_appointment UNIQUE (appointment_id),
            CONSTRAINT ck_companion_review_rating CHECK (rating >= 1 AND rating <= 5)
        )
    ''')
    op.execute(
        'CREATE INDEX idx_companion_reviews_companion '
        'ON companion_reviews(companion_id, is_public)'
    )


def downgrade() -> None:
    """Drop booking tables."""
    op.execute('DROP TABLE IF EXISTS companion_reviews')
    op.execute('DROP TABLE IF EXISTS companion_earnings')
    op.execute('DROP TABLE IF EXISTS appointments')
    op.execute('DROP TABLE IF EXISTS calendar_integrations')
    op.execute('DROP TABLE IF EXISTS human_companions')
    op.execute('DROP TABLE IF EXISTS users')
