"""add_reconciled_to_returns

Revision ID: add_returns_reconciled
Revises:
Create Date: 2025-11-20 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = 'add_returns_reconciled'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    """
    returns 表增加 reconciled 标记

    退货应用到销售后置为 true；重复对账与历史回填据此跳过。
    已有数据一律为 false，由 pos-recon backfill 回填。
    """
    op.add_column('returns', sa.Column(
        'reconciled',
        sa.Boolean(),
        nullable=False,
        server_default=sa.text('false'),
        comment='是否已应用到销售'
    ))

    # 交叉核对按 date + status 过滤销售
    op.create_index('ix_sales_date_status', 'sales', ['date', 'status_id'], if_not_exists=True)


def downgrade() -> None:
    op.drop_index('ix_sales_date_status', table_name='sales', if_exists=True)
    op.drop_column('returns', 'reconciled')
