"""create assessment tables

Revision ID: 20251019_01
Revises:
Create Date: 2025-10-19 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '20251019_01'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


role = sa.Enum('student', 'instructor', 'admin', name='role')
testtype = sa.Enum('formative', 'summative', name='testtype')
testposition = sa.Enum('after_lesson', 'after_chapter', 'after_course', name='testposition')
validationtype = sa.Enum('automatic', 'manual', 'mixed', name='validationtype')
questiontype = sa.Enum(
    'single_choice',
    'multiple_choice',
    'true_false',
    'short_answer',
    'long_answer',
    'file_upload',
    name='questiontype',
)
submissionstatus = sa.Enum('draft', 'submitted', 'graded', name='submissionstatus')


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        'users',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('first_name', sa.String(), nullable=False),
        sa.Column('last_name', sa.String(), nullable=False),
        sa.Column('email', sa.String(), nullable=False),
        sa.Column('role', role, nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_users_email'), 'users', ['email'], unique=True)

    op.create_table(
        'tests',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('instructor_id', sa.UUID(), nullable=True),
        sa.Column('testable_type', sa.String(), nullable=True),
        sa.Column('testable_id', sa.String(), nullable=True),
        sa.Column('title', sa.String(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('instructions', sa.Text(), nullable=True),
        sa.Column('type', testtype, nullable=False),
        sa.Column('position', testposition, nullable=False),
        sa.Column('duration_minutes', sa.Integer(), nullable=True),
        sa.Column('max_attempts', sa.Integer(), nullable=True),
        sa.Column('passing_score', sa.Integer(), nullable=False),
        sa.Column('validation_type', validationtype, nullable=False),
        sa.Column('show_results_immediately', sa.Boolean(), nullable=False),
        sa.Column('show_correct_answers', sa.Boolean(), nullable=False),
        sa.Column('randomize_questions', sa.Boolean(), nullable=False),
        sa.Column('randomize_options', sa.Boolean(), nullable=False),
        sa.Column('one_question_per_page', sa.Boolean(), nullable=False),
        sa.Column('allow_back_navigation', sa.Boolean(), nullable=False),
        sa.Column('auto_save_draft', sa.Boolean(), nullable=False),
        sa.Column('is_published', sa.Boolean(), nullable=False),
        sa.Column('disable_copy_paste', sa.Boolean(), nullable=False),
        sa.Column('full_screen_required', sa.Boolean(), nullable=False),
        sa.Column('webcam_monitoring', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint('passing_score >= 0 AND passing_score <= 100', name='ck_tests_passing_score'),
        sa.CheckConstraint('max_attempts IS NULL OR max_attempts > 0', name='ck_tests_max_attempts'),
        sa.CheckConstraint('duration_minutes IS NULL OR duration_minutes > 0', name='ck_tests_duration'),
        sa.ForeignKeyConstraint(['instructor_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
    )

    op.create_table(
        'questions',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('test_id', sa.UUID(), nullable=False),
        sa.Column('question_text', sa.Text(), nullable=False),
        sa.Column('explanation', sa.Text(), nullable=True),
        sa.Column('type', questiontype, nullable=False),
        sa.Column('points', sa.Integer(), nullable=False),
        sa.Column('order', sa.Integer(), nullable=False),
        sa.Column('is_required', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint('points > 0', name='ck_questions_points_positive'),
        sa.ForeignKeyConstraint(['test_id'], ['tests.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_questions_test_id'), 'questions', ['test_id'], unique=False)

    op.create_table(
        'question_options',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('question_id', sa.UUID(), nullable=False),
        sa.Column('option_text', sa.String(), nullable=False),
        sa.Column('is_correct', sa.Boolean(), nullable=False),
        sa.Column('feedback', sa.Text(), nullable=True),
        sa.Column('order', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['question_id'], ['questions.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_question_options_question_id'), 'question_options', ['question_id'], unique=False)

    op.create_table(
        'test_submissions',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('test_id', sa.UUID(), nullable=False),
        sa.Column('user_id', sa.UUID(), nullable=False),
        sa.Column('attempt_number', sa.Integer(), nullable=False),
        sa.Column('status', submissionstatus, nullable=False),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('submitted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('graded_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('draft_revision', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('forced', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('auto_score', sa.Integer(), nullable=True),
        sa.Column('pending_manual', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('score', sa.Integer(), nullable=True),
        sa.Column('percentage', sa.Float(), nullable=True),
        sa.Column('grade', sa.String(length=4), nullable=True),
        sa.Column('passed', sa.Boolean(), nullable=True),
        sa.Column('instructor_comments', sa.Text(), nullable=True),
        sa.Column('graded_by', sa.UUID(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['test_id'], ['tests.id']),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.ForeignKeyConstraint(['graded_by'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id', 'test_id', 'attempt_number', name='uq_submission_attempt'),
    )
    op.create_index(op.f('ix_test_submissions_test_id'), 'test_submissions', ['test_id'], unique=False)
    op.create_index(op.f('ix_test_submissions_user_id'), 'test_submissions', ['user_id'], unique=False)
    op.create_index(op.f('ix_test_submissions_status'), 'test_submissions', ['status'], unique=False)
    op.create_index(
        op.f('ix_test_submissions_pending_manual'), 'test_submissions', ['pending_manual'], unique=False
    )
    # One open draft per (user, test); finished attempts are unconstrained
    op.create_index(
        'uq_submission_open_draft',
        'test_submissions',
        ['user_id', 'test_id'],
        unique=True,
        postgresql_where=sa.text("status = 'draft'"),
        sqlite_where=sa.text("status = 'draft'"),
    )

    op.create_table(
        'submission_answers',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('submission_id', sa.UUID(), nullable=False),
        sa.Column('question_id', sa.UUID(), nullable=False),
        sa.Column('selected_options', sa.JSON(), nullable=True),
        sa.Column('answer_text', sa.Text(), nullable=True),
        sa.Column('answer_file', sa.String(), nullable=True),
        sa.Column('is_correct', sa.Boolean(), nullable=True),
        sa.Column('points_earned', sa.Integer(), nullable=True),
        sa.Column('feedback', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['submission_id'], ['test_submissions.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['question_id'], ['questions.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('submission_id', 'question_id', name='uq_submission_answer_question'),
    )
    op.create_index(
        op.f('ix_submission_answers_submission_id'), 'submission_answers', ['submission_id'], unique=False
    )


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index(op.f('ix_submission_answers_submission_id'), table_name='submission_answers')
    op.drop_table('submission_answers')
    op.drop_index('uq_submission_open_draft', table_name='test_submissions')
    op.drop_index(op.f('ix_test_submissions_pending_manual'), table_name='test_submissions')
    op.drop_index(op.f('ix_test_submissions_status'), table_name='test_submissions')
    op.drop_index(op.f('ix_test_submissions_user_id'), table_name='test_submissions')
    op.drop_index(op.f('ix_test_submissions_test_id'), table_name='test_submissions')
    op.drop_table('test_submissions')
    op.drop_index(op.f('ix_question_options_question_id'), table_name='question_options')
    op.drop_table('question_options')
    op.drop_index(op.f('ix_questions_test_id'), table_name='questions')
    op.drop_table('questions')
    op.drop_table('tests')
    op.drop_index(op.f('ix_users_email'), table_name='users')
    op.drop_table('users')

    for enum_type in (submissionstatus, questiontype, validationtype, testposition, testtype, role):
        enum_type.drop(op.get_bind(), checkfirst=True)
