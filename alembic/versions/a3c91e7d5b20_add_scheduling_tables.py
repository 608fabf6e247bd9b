"""add scheduling and hour wallet tables

Revision ID: a3c91e7d5b20
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = 'a3c91e7d5b20'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps(updated: bool = True):
    columns = [
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False),
    ]
    if updated:
        columns.append(
            sa.Column('updated_at', sa.DateTime(), server_default=sa.text('now()'), nullable=False)
        )
    return columns


def upgrade() -> None:
    op.create_table('users',
    sa.Column('id', sa.Uuid(), nullable=False),
    sa.Column('email', sa.String(length=255), nullable=False),
    sa.Column('first_name', sa.String(length=100), nullable=True),
    sa.Column('last_name', sa.String(length=100), nullable=True),
    sa.Column('role', sa.String(length=20), nullable=False),
    sa.Column('is_active', sa.Boolean(), nullable=False, server_default='true'),
    *_timestamps(),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('email')
    )
    op.create_index('idx_users_role', 'users', ['role'], unique=False)

    op.create_table('courses',
    sa.Column('id', sa.Uuid(), nullable=False),
    sa.Column('title', sa.String(length=200), nullable=False),
    sa.Column('tutor_id', sa.Uuid(), nullable=True),
    sa.Column('is_group', sa.Boolean(), nullable=False, server_default='false'),
    sa.Column('max_enrollment', sa.Integer(), nullable=True),
    sa.Column('is_active', sa.Boolean(), nullable=False, server_default='true'),
    *_timestamps(),
    sa.ForeignKeyConstraint(['tutor_id'], ['users.id'], ondelete='SET NULL'),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_courses_tutor', 'courses', ['tutor_id'], unique=False)

    op.create_table('tutor_availability',
    sa.Column('id', sa.Uuid(), nullable=False),
    sa.Column('tutor_id', sa.Uuid(), nullable=False),
    sa.Column('day_of_week', sa.Integer(), nullable=False),
    sa.Column('start_time', sa.Time(), nullable=False),
    sa.Column('end_time', sa.Time(), nullable=False),
    sa.Column('is_recurring', sa.Boolean(), nullable=False, server_default='true'),
    sa.Column('is_active', sa.Boolean(), nullable=False, server_default='true'),
    *_timestamps(),
    sa.CheckConstraint('day_of_week >= 0 AND day_of_week <= 6'),
    sa.CheckConstraint('start_time < end_time', name='availability_window_check'),
    sa.ForeignKeyConstraint(['tutor_id'], ['users.id'], ondelete='CASCADE'),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_availability_tutor_day', 'tutor_availability', ['tutor_id', 'day_of_week'], unique=False)

    op.create_table('session_proposals',
    sa.Column('id', sa.Uuid(), nullable=False),
    sa.Column('student_id', sa.Uuid(), nullable=False),
    sa.Column('tutor_id', sa.Uuid(), nullable=False),
    sa.Column('course_id', sa.Uuid(), nullable=False),
    sa.Column('proposed_start_time', sa.DateTime(), nullable=False),
    sa.Column('proposed_end_time', sa.DateTime(), nullable=False),
    sa.Column('status', sa.String(length=20), nullable=False, server_default='pending'),
    sa.Column('student_message', sa.Text(), nullable=True),
    sa.Column('tutor_response', sa.Text(), nullable=True),
    sa.Column('responded_at', sa.DateTime(), nullable=True),
    *_timestamps(),
    sa.ForeignKeyConstraint(['student_id'], ['users.id'], ondelete='CASCADE'),
    sa.ForeignKeyConstraint(['tutor_id'], ['users.id'], ondelete='CASCADE'),
    sa.ForeignKeyConstraint(['course_id'], ['courses.id'], ondelete='CASCADE'),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_proposals_tutor_status', 'session_proposals', ['tutor_id', 'status'], unique=False)
    op.create_index('idx_proposals_student', 'session_proposals', ['student_id'], unique=False)

    op.create_table('tutoring_sessions',
    sa.Column('id', sa.Uuid(), nullable=False),
    sa.Column('tutor_id', sa.Uuid(), nullable=False),
    sa.Column('student_id', sa.Uuid(), nullable=True),
    sa.Column('course_id', sa.Uuid(), nullable=False),
    sa.Column('proposal_id', sa.Uuid(), nullable=True),
    sa.Column('scheduled_start_time', sa.DateTime(), nullable=False),
    sa.Column('scheduled_end_time', sa.DateTime(), nullable=False),
    sa.Column('scheduled_minutes', sa.Integer(), nullable=True),
    sa.Column('status', sa.String(length=20), nullable=False, server_default='scheduled'),
    sa.Column('is_group_session', sa.Boolean(), nullable=False, server_default='false'),
    sa.Column('tutor_join_time', sa.DateTime(), nullable=True),
    sa.Column('student_join_time', sa.DateTime(), nullable=True),
    sa.Column('tutor_late', sa.Boolean(), nullable=False, server_default='false'),
    sa.Column('actual_start_time', sa.DateTime(), nullable=True),
    sa.Column('actual_end_time', sa.DateTime(), nullable=True),
    sa.Column('reserved_minutes', sa.Integer(), nullable=False, server_default='0'),
    sa.Column('billable_minutes', sa.Integer(), nullable=True),
    sa.Column('notes', sa.Text(), nullable=True),
    *_timestamps(),
    sa.CheckConstraint('reserved_minutes >= 0', name='session_reserved_non_negative'),
    sa.CheckConstraint(
        'billable_minutes IS NULL OR scheduled_minutes IS NULL OR billable_minutes <= scheduled_minutes',
        name='session_billable_within_schedule',
    ),
    sa.ForeignKeyConstraint(['tutor_id'], ['users.id'], ondelete='CASCADE'),
    sa.ForeignKeyConstraint(['student_id'], ['users.id'], ondelete='CASCADE'),
    sa.ForeignKeyConstraint(['course_id'], ['courses.id'], ondelete='CASCADE'),
    sa.ForeignKeyConstraint(['proposal_id'], ['session_proposals.id'], ondelete='SET NULL'),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('proposal_id')
    )
    op.create_index('idx_tutoring_sessions_tutor_status', 'tutoring_sessions', ['tutor_id', 'status'], unique=False)
    op.create_index('idx_tutoring_sessions_student', 'tutoring_sessions', ['student_id'], unique=False)
    op.create_index('idx_tutoring_sessions_start', 'tutoring_sessions', ['scheduled_start_time'], unique=False)

    op.create_table('session_attendance',
    sa.Column('id', sa.Uuid(), nullable=False),
    sa.Column('session_id', sa.Uuid(), nullable=False),
    sa.Column('student_id', sa.Uuid(), nullable=False),
    sa.Column('join_time', sa.DateTime(), nullable=True),
    sa.Column('leave_time', sa.DateTime(), nullable=True),
    sa.Column('attended', sa.Boolean(), nullable=False, server_default='false'),
    sa.Column('reserved_minutes', sa.Integer(), nullable=False, server_default='0'),
    sa.Column('consumed_minutes', sa.Integer(), nullable=False, server_default='0'),
    *_timestamps(),
    sa.CheckConstraint('reserved_minutes >= 0', name='attendance_reserved_non_negative'),
    sa.CheckConstraint('consumed_minutes >= 0', name='attendance_consumed_non_negative'),
    sa.ForeignKeyConstraint(['session_id'], ['tutoring_sessions.id'], ondelete='CASCADE'),
    sa.ForeignKeyConstraint(['student_id'], ['users.id'], ondelete='CASCADE'),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('session_id', 'student_id', name='uq_attendance_session_student')
    )
    op.create_index('idx_attendance_student', 'session_attendance', ['student_id'], unique=False)

    op.create_table('hour_wallets',
    sa.Column('id', sa.Uuid(), nullable=False),
    sa.Column('student_id', sa.Uuid(), nullable=False),
    sa.Column('course_id', sa.Uuid(), nullable=False),
    sa.Column('purchased_minutes', sa.Integer(), nullable=False, server_default='0'),
    sa.Column('consumed_minutes', sa.Integer(), nullable=False, server_default='0'),
    sa.Column('status', sa.String(length=20), nullable=False, server_default='active'),
    *_timestamps(),
    sa.CheckConstraint('purchased_minutes >= 0', name='wallet_purchased_non_negative'),
    sa.CheckConstraint('consumed_minutes >= 0', name='wallet_consumed_non_negative'),
    sa.ForeignKeyConstraint(['student_id'], ['users.id'], ondelete='CASCADE'),
    sa.ForeignKeyConstraint(['course_id'], ['courses.id'], ondelete='CASCADE'),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('student_id', 'course_id', name='uq_wallet_student_course')
    )
    op.create_index('idx_wallets_student', 'hour_wallets', ['student_id'], unique=False)

    op.create_table('wallet_transactions',
    sa.Column('id', sa.Uuid(), nullable=False),
    sa.Column('wallet_id', sa.Uuid(), nullable=False),
    sa.Column('kind', sa.String(length=30), nullable=False),
    sa.Column('minutes', sa.Integer(), nullable=False),
    sa.Column('session_id', sa.Uuid(), nullable=True),
    sa.Column('note', sa.Text(), nullable=True),
    *_timestamps(updated=False),
    sa.ForeignKeyConstraint(['wallet_id'], ['hour_wallets.id'], ondelete='CASCADE'),
    sa.ForeignKeyConstraint(['session_id'], ['tutoring_sessions.id'], ondelete='SET NULL'),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_wallet_transactions_wallet', 'wallet_transactions', ['wallet_id', 'created_at'], unique=False)

    op.create_table('notifications',
    sa.Column('id', sa.Uuid(), nullable=False),
    sa.Column('user_id', sa.Uuid(), nullable=False),
    sa.Column('type', sa.String(length=50), nullable=False),
    sa.Column('title', sa.String(length=200), nullable=False),
    sa.Column('message', sa.Text(), nullable=False),
    sa.Column('link', sa.String(length=500), nullable=True),
    sa.Column('related_id', sa.String(length=100), nullable=True),
    sa.Column('is_read', sa.Boolean(), nullable=False, server_default='false'),
    *_timestamps(updated=False),
    sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_notifications_user', 'notifications', ['user_id', 'is_read'], unique=False)


def downgrade() -> None:
    op.drop_index('idx_notifications_user', table_name='notifications')
    op.drop_table('notifications')
    op.drop_index('idx_wallet_transactions_wallet', table_name='wallet_transactions')
    op.drop_table('wallet_transactions')
    op.drop_index('idx_wallets_student', table_name='hour_wallets')
    op.drop_table('hour_wallets')
    op.drop_index('idx_attendance_student', table_name='session_attendance')
    op.drop_table('session_attendance')
    op.drop_index('idx_tutoring_sessions_start', table_name='tutoring_sessions')
    op.drop_index('idx_tutoring_sessions_student', table_name='tutoring_sessions')
    op.drop_index('idx_tutoring_sessions_tutor_status', table_name='tutoring_sessions')
    op.drop_table('tutoring_sessions')
    op.drop_index('idx_proposals_student', table_name='session_proposals')
    op.drop_index('idx_proposals_tutor_status', table_name='session_proposals')
    op.drop_table('session_proposals')
    op.drop_index('idx_availability_tutor_day', table_name='tutor_availability')
    op.drop_table('tutor_availability')
    op.drop_index('idx_courses_tutor', table_name='courses')
    op.drop_table('courses')
    op.drop_index('idx_users_role', table_name='users')
    op.drop_table('users')
