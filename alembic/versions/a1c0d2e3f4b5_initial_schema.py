"""initial schema: assessments, submissions, interviews, interview_turns

Revision ID: a1c0d2e3f4b5
Revises:
Create Date: 2025-09-02 09:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'a1c0d2e3f4b5'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'assessments',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('account_id', sa.Integer(), nullable=False),
        sa.Column('title', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('time_limit_minutes', sa.Integer(), nullable=True),
        sa.Column('num_interview_questions', sa.Integer(), server_default='2', nullable=False),
        sa.Column('interviewer_custom_instructions', sa.Text(), nullable=True),
        sa.Column('is_smart_interviewer_enabled', sa.Boolean(), server_default=sa.true(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_assessments_account_id', 'assessments', ['account_id'])

    op.create_table(
        'submissions',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('token', sa.String(length=64), nullable=False, unique=True),
        sa.Column('assessment_id', sa.Integer(), sa.ForeignKey('assessments.id', ondelete='CASCADE'), nullable=False),
        sa.Column('candidate_name', sa.String(length=255), nullable=False),
        sa.Column('candidate_email', sa.String(length=255), nullable=True),
        sa.Column('status', sa.String(length=20), server_default='pending', nullable=False),
        sa.Column('time_limit_minutes', sa.Integer(), nullable=True),
        sa.Column('question_count', sa.Integer(), server_default='2', nullable=False),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('submitted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('time_spent_minutes', sa.Integer(), nullable=True),
        sa.Column('submitted_late', sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column('github_link', sa.String(length=500), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('opt_out_reason', sa.Text(), nullable=True),
        sa.Column('opted_out_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('ip_address', sa.String(length=64), nullable=True),
        sa.Column('user_agent', sa.String(length=512), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_submissions_assessment_id', 'submissions', ['assessment_id'])

    op.create_table(
        'interviews',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('submission_id', sa.Integer(), sa.ForeignKey('submissions.id', ondelete='CASCADE'), nullable=False, unique=True),
        sa.Column('status', sa.String(length=20), server_default='not_started', nullable=False),
        sa.Column('provider', sa.String(length=50), nullable=True),
        sa.Column('conversation_id', sa.String(length=255), nullable=True, unique=True),
        sa.Column('questions', sa.JSON(), nullable=True),
        sa.Column('summary', sa.Text(), nullable=True),
        sa.Column('analysis', sa.JSON(), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('error_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_activity_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )

    op.create_table(
        'interview_turns',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('interview_id', sa.Integer(), sa.ForeignKey('interviews.id', ondelete='CASCADE'), nullable=False),
        sa.Column('sequence_number', sa.Integer(), nullable=False),
        sa.Column('role', sa.String(length=20), nullable=False),
        sa.Column('text', sa.Text(), nullable=False),
        sa.Column('question_index', sa.Integer(), nullable=True),
        sa.Column('start_offset_ms', sa.Integer(), nullable=True),
        sa.Column('end_offset_ms', sa.Integer(), nullable=True),
        sa.Column('source', sa.String(length=20), server_default='session', nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint('interview_id', 'sequence_number', name='uq_interview_turn_seq'),
    )
    op.create_index('ix_interview_turns_interview_id', 'interview_turns', ['interview_id'])


def downgrade():
    op.drop_index('ix_interview_turns_interview_id', table_name='interview_turns')
    op.drop_table('interview_turns')
    op.drop_table('interviews')
    op.drop_index('ix_submissions_assessment_id', table_name='submissions')
    op.drop_table('submissions')
    op.drop_index('ix_assessments_account_id', table_name='assessments')
    op.drop_table('assessments')
