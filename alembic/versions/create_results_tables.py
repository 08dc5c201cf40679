"""Create result batch, subject, grading scale and audit tables.

Revision ID: create_results_tables
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = 'create_results_tables'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


# Enum types store member names, matching the ORM's Enum() columns
userrole = postgresql.ENUM('ADMIN', 'TEACHER', 'STUDENT', 'PARENT', name='userrole', create_type=False)
subjectcategory = postgresql.ENUM(
    'SCIENCE', 'ARTS', 'COMMERCIAL', 'GENERAL', 'VOCATIONAL', 'LANGUAGE', 'HUMANITIES', 'OTHER',
    name='subjectcategory', create_type=False,
)
batchstatus = postgresql.ENUM(
    'DRAFT', 'PROCESSING', 'COMPLETED', 'FAILED', 'PUBLISHED',
    name='batchstatus', create_type=False,
)
auditaction = postgresql.ENUM(
    'BATCH_CREATED', 'BATCH_UPDATED', 'BATCH_DELETED', 'BATCH_PUBLISHED', 'BATCH_STATUS_OVERRIDDEN',
    'UPLOAD_COMPLETED', 'UPLOAD_FAILED',
    'DATA_CREATED', 'DATA_UPDATED', 'DATA_DELETED',
    name='auditaction', create_type=False,
)


def timestamps() -> list[sa.Column]:
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
    ]


def upgrade() -> None:
    bind = op.get_bind()
    for enum_type in (userrole, subjectcategory, batchstatus, auditaction):
        enum_type.create(bind, checkfirst=True)

    op.create_table(
        'users',
        sa.Column('id', sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column('first_name', sa.String(100), nullable=False),
        sa.Column('last_name', sa.String(100), nullable=False),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('username', sa.String(255), nullable=True),
        sa.Column('role', userrole, nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        *timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('username'),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)

    op.create_table(
        'classrooms',
        sa.Column('id', sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('level', sa.String(50), nullable=True),
        sa.Column('section', sa.String(50), nullable=True),
        sa.Column('academic_year', sa.String(20), nullable=True),
        sa.Column('academic_term', sa.String(20), nullable=True),
        *timestamps(),
        sa.PrimaryKeyConstraint('id'),
    )

    op.create_table(
        'classroom_students',
        sa.Column('id', sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column('classroom_id', sa.BigInteger(), nullable=False),
        sa.Column('student_id', sa.BigInteger(), nullable=False),
        sa.Column('enrollment_number', sa.String(50), nullable=True),
        sa.Column('roll_number', sa.String(50), nullable=True),
        *timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['classroom_id'], ['classrooms.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['student_id'], ['users.id'], ondelete='CASCADE'),
        sa.UniqueConstraint('classroom_id', 'student_id', name='uq_classroom_student'),
    )
    op.create_index('ix_classroom_students_classroom_id', 'classroom_students', ['classroom_id'])
    op.create_index('ix_classroom_students_student_id', 'classroom_students', ['student_id'])

    op.create_table(
        'subjects',
        sa.Column('id', sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('code', sa.String(50), nullable=False),
        sa.Column('category', subjectcategory, nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        *timestamps(),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_subjects_code', 'subjects', ['code'], unique=True)

    op.create_table(
        'subject_groups',
        sa.Column('id', sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('academic_session', sa.String(20), nullable=True),
        sa.Column('term', sa.String(20), nullable=True),
        sa.Column('created_by', sa.BigInteger(), nullable=True),
        *timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['created_by'], ['users.id'], ondelete='SET NULL'),
    )

    op.create_table(
        'subject_group_subjects',
        sa.Column('id', sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column('subject_group_id', sa.BigInteger(), nullable=False),
        sa.Column('subject_id', sa.BigInteger(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['subject_group_id'], ['subject_groups.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['subject_id'], ['subjects.id'], ondelete='CASCADE'),
        sa.UniqueConstraint('subject_group_id', 'subject_id', name='uq_subject_group_subject'),
    )
    op.create_index('ix_subject_group_subjects_subject_group_id', 'subject_group_subjects', ['subject_group_id'])
    op.create_index('ix_subject_group_subjects_subject_id', 'subject_group_subjects', ['subject_id'])

    op.create_table(
        'grading_scales',
        sa.Column('id', sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('grade_config', postgresql.JSONB(), nullable=False),
        sa.Column('is_default', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_by', sa.BigInteger(), nullable=True),
        *timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['created_by'], ['users.id'], ondelete='SET NULL'),
    )

    op.create_table(
        'result_batches',
        sa.Column('id', sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column('batch_name', sa.String(200), nullable=False),
        sa.Column('batch_code', sa.String(50), nullable=False),
        sa.Column('classroom_id', sa.BigInteger(), nullable=False),
        sa.Column('academic_year', sa.String(20), nullable=False),
        sa.Column('term', sa.String(20), nullable=False),
        sa.Column('grading_scale_id', sa.BigInteger(), nullable=False),
        sa.Column('subject_group_id', sa.BigInteger(), nullable=False),
        sa.Column('status', batchstatus, nullable=False),
        sa.Column('csv_file_path', sa.Text(), nullable=True),
        sa.Column('error_log', postgresql.JSONB(), nullable=True),
        sa.Column('total_students', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_subjects', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_results', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('failed_imports', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('published_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('teacher_name', sa.String(200), nullable=True),
        sa.Column('principal_name', sa.String(200), nullable=True),
        sa.Column('teacher_signature_url', sa.Text(), nullable=True),
        sa.Column('principal_signature_url', sa.Text(), nullable=True),
        sa.Column('created_by', sa.BigInteger(), nullable=False),
        sa.Column('updated_by', sa.BigInteger(), nullable=True),
        *timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['classroom_id'], ['classrooms.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['grading_scale_id'], ['grading_scales.id'], ondelete='RESTRICT'),
        sa.ForeignKeyConstraint(['subject_group_id'], ['subject_groups.id'], ondelete='RESTRICT'),
        sa.ForeignKeyConstraint(['created_by'], ['users.id'], ondelete='RESTRICT'),
        sa.ForeignKeyConstraint(['updated_by'], ['users.id'], ondelete='SET NULL'),
        sa.UniqueConstraint('batch_code'),
    )
    op.create_index('ix_result_batches_scope', 'result_batches', ['classroom_id', 'academic_year', 'term'])
    op.create_index('ix_result_batches_subject_group_id', 'result_batches', ['subject_group_id'])
    op.create_index('ix_result_batches_status', 'result_batches', ['status'])
    op.create_index('ix_result_batches_created_by', 'result_batches', ['created_by'])

    op.create_table(
        'student_results',
        sa.Column('id', sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column('classroom_id', sa.BigInteger(), nullable=False),
        sa.Column('student_id', sa.BigInteger(), nullable=False),
        sa.Column('subject_id', sa.BigInteger(), nullable=False),
        sa.Column('academic_year', sa.String(20), nullable=False),
        sa.Column('term', sa.String(20), nullable=False),
        sa.Column('ca_score', sa.DECIMAL(5, 2), nullable=False, server_default='0'),
        sa.Column('exam_score', sa.DECIMAL(5, 2), nullable=False, server_default='0'),
        sa.Column('total_score', sa.DECIMAL(5, 2), nullable=False, server_default='0'),
        sa.Column('grade', sa.String(5), nullable=True),
        sa.Column('remark', sa.String(255), nullable=True),
        sa.Column('teacher_id', sa.BigInteger(), nullable=True),
        *timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['classroom_id'], ['classrooms.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['student_id'], ['users.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['subject_id'], ['subjects.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['teacher_id'], ['users.id'], ondelete='SET NULL'),
        sa.UniqueConstraint(
            'classroom_id', 'student_id', 'subject_id', 'academic_year', 'term',
            name='unique_student_result',
        ),
    )
    op.create_index('ix_student_results_scope', 'student_results', ['classroom_id', 'academic_year', 'term'])
    op.create_index('ix_student_results_student_id', 'student_results', ['student_id'])

    op.create_table(
        'audit_logs',
        sa.Column('id', sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column('user_id', sa.BigInteger(), nullable=True),
        sa.Column('action', auditaction, nullable=False),
        sa.Column('resource_type', sa.String(100), nullable=False),
        sa.Column('resource_id', sa.String(100), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('extra_data', postgresql.JSONB(), nullable=True),
        sa.Column('ip_address', sa.String(50), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='SET NULL'),
    )
    op.create_index('ix_audit_logs_user_id', 'audit_logs', ['user_id'])
    op.create_index('ix_audit_logs_action', 'audit_logs', ['action'])
    op.create_index('ix_audit_logs_created_at', 'audit_logs', ['created_at'])


def downgrade() -> None:
    op.drop_table('audit_logs')
    op.drop_table('student_results')
    op.drop_table('result_batches')
    op.drop_table('grading_scales')
    op.drop_table('subject_group_subjects')
    op.drop_table('subject_groups')
    op.drop_table('subjects')
    op.drop_table('classroom_students')
    op.drop_table('classrooms')
    op.drop_table('users')

    bind = op.get_bind()
    for enum_type in (auditaction, batchstatus, subjectcategory, userrole):
        enum_type.drop(bind, checkfirst=True)
