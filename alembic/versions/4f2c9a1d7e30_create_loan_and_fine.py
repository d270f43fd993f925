"""Create loan and fine tables

Revision ID: 4f2c9a1d7e30
Revises:
Create Date: 2026-10-19 09:12:41.503118
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '4f2c9a1d7e30'
down_revision = None
branch_labels = None
depends_on = None

loan_status = sa.Enum('BORROWED', 'OVERDUE', 'RETURNED', name='loanstatus')
fine_type = sa.Enum('LATE_RETURN', 'LOST_ITEM', 'DAMAGED_ITEM', name='finetype')
fine_status = sa.Enum('PENDING', 'PAID', 'CANCELLED', name='finestatus')


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        'loan',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('item_id', sa.Integer(), nullable=False),
        sa.Column('member_id', sa.Integer(), nullable=False),
        sa.Column('borrow_date', sa.Date(), nullable=False),
        sa.Column('due_date', sa.Date(), nullable=False),
        sa.Column('return_date', sa.Date(), nullable=True),
        sa.Column('status', loan_status, nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_loan_item_id', 'loan', ['item_id'])
    op.create_index('ix_loan_member_id', 'loan', ['member_id'])
    op.create_index('ix_loan_status', 'loan', ['status'])

    op.create_table(
        'fine',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('member_id', sa.Integer(), nullable=False),
        sa.Column('loan_id', sa.Integer(), nullable=False),
        sa.Column('amount', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column('fine_type', fine_type, nullable=False),
        sa.Column('status', fine_status, nullable=False),
        sa.Column('issued_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['loan_id'], ['loan.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_fine_member_id', 'fine', ['member_id'])
    op.create_index('ix_fine_loan_id', 'fine', ['loan_id'])
    op.create_index('ix_fine_status', 'fine', ['status'])
    # at most one non-cancelled fine per (loan, type)
    op.create_index(
        'uq_fine_active_loan_type',
        'fine',
        ['loan_id', 'fine_type'],
        unique=True,
        postgresql_where=sa.text("status != 'CANCELLED'"),
        sqlite_where=sa.text("status != 'CANCELLED'"),
    )


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index('uq_fine_active_loan_type', table_name='fine')
    op.drop_index('ix_fine_status', table_name='fine')
    op.drop_index('ix_fine_loan_id', table_name='fine')
    op.drop_index('ix_fine_member_id', table_name='fine')
    op.drop_table('fine')
    op.drop_index('ix_loan_status', table_name='loan')
    op.drop_index('ix_loan_member_id', table_name='loan')
    op.drop_index('ix_loan_item_id', table_name='loan')
    op.drop_table('loan')
    fine_status.drop(op.get_bind(), checkfirst=True)
    fine_type.drop(op.get_bind(), checkfirst=True)
    loan_status.drop(op.get_bind(), checkfirst=True)
