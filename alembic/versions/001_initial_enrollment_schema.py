"""initial enrollment schema

Revision ID: 001
Revises:
Create Date: 2026-10-19 12:00:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.execute("""
        CREATE TYPE enrollmentstatus AS ENUM (
            'pending',
            'pending_payment',
            'approved',
            'active',
            'rejected',
            'cancelled'
        )
    """)

    op.create_table(
        'enrollments',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('guardian_email', sa.String(), nullable=False),
        sa.Column('child_first_name', sa.String(), nullable=False),
        sa.Column('child_last_name', sa.String(), nullable=False),
        sa.Column('location_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('student_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('status', postgresql.ENUM(
            'pending',
            'pending_payment',
            'approved',
            'active',
            'rejected',
            'cancelled',
            name='enrollmentstatus',
            create_type=False
        ), nullable=False, server_default='pending'),
        sa.Column('stripe_checkout_session_id', sa.String(), nullable=True),
        sa.Column('paid', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('submitted_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('reviewed_at', sa.DateTime(), nullable=True),
        sa.Column('reviewed_by', sa.String(), nullable=True),
        sa.Column('rejection_reason', sa.Text(), nullable=True),
        sa.Column('cancellation_reason', sa.Text(), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_enrollments_guardian_email', 'enrollments', ['guardian_email'])
    op.create_index('ix_enrollments_location_id', 'enrollments', ['location_id'])
    op.create_index('ix_enrollments_student_id', 'enrollments', ['student_id'])
    op.create_index('ix_enrollments_status', 'enrollments', ['status'])
    op.create_index('ix_enrollments_stripe_checkout_session_id', 'enrollments', ['stripe_checkout_session_id'])
    op.create_index('ix_enrollments_submitted_at', 'enrollments', ['submitted_at'])
    op.create_index(
        'ix_enrollments_natural_key',
        'enrollments',
        ['guardian_email', 'child_first_name', 'child_last_name', 'location_id']
    )

    op.execute("""
        CREATE TYPE webhookprocessingstatus AS ENUM (
            'pending',
            'success',
            'failed'
        )
    """)

    op.create_table(
        'webhook_events',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('provider_event_id', sa.String(), nullable=True),
        sa.Column('event_type', sa.String(), nullable=False),
        sa.Column('payload', postgresql.JSON(astext_type=sa.Text()), nullable=False),
        sa.Column('processing_status', postgresql.ENUM(
            'pending',
            'success',
            'failed',
            name='webhookprocessingstatus',
            create_type=False
        ), nullable=False, server_default='pending'),
        sa.Column('enrollment_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('received_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('processed_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_webhook_events_provider_event_id', 'webhook_events', ['provider_event_id'], unique=True)
    op.create_index('ix_webhook_events_event_type', 'webhook_events', ['event_type'])
    op.create_index('ix_webhook_events_processing_status', 'webhook_events', ['processing_status'])
    op.create_index('ix_webhook_events_enrollment_id', 'webhook_events', ['enrollment_id'])
    op.create_index('ix_webhook_events_received_at', 'webhook_events', ['received_at'])

    op.create_table(
        'activity_logs',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('actor', sa.String(), nullable=False),
        sa.Column('action', sa.String(), nullable=False),
        sa.Column('entity_type', sa.String(), nullable=False),
        sa.Column('entity_id', sa.String(), nullable=False),
        sa.Column('details', postgresql.JSON(astext_type=sa.Text()), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_activity_logs_actor', 'activity_logs', ['actor'])
    op.create_index('ix_activity_logs_action', 'activity_logs', ['action'])
    op.create_index('ix_activity_logs_entity_id', 'activity_logs', ['entity_id'])
    op.create_index('ix_activity_logs_created_at', 'activity_logs', ['created_at'])

    op.create_table(
        'student_locations',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('student_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('location_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_student_locations_student_id', 'student_locations', ['student_id'])
    op.create_index('ix_student_locations_location_id', 'student_locations', ['location_id'])
    op.create_unique_constraint(
        'uq_student_locations_student_id_location_id',
        'student_locations',
        ['student_id', 'location_id']
    )


def downgrade() -> None:
    op.drop_table('student_locations')
    op.drop_table('activity_logs')
    op.drop_table('webhook_events')
    op.execute("DROP TYPE webhookprocessingstatus")
    op.drop_table('enrollments')
    op.execute("DROP TYPE enrollmentstatus")
