"""stone blocks

Revision ID: 001
Revises: 
Create Date: 2026-10-19 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'stone_blocks',
        sa.Column('id', sa.Uuid(as_uuid=True), primary_key=True),
        sa.Column('identity_token', sa.String(64), nullable=False),
        sa.Column('identity_artifact_ref', sa.String(255), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('dimensions', sa.String(255), nullable=False),
        sa.Column('category', sa.String(100), nullable=False),
        sa.Column('subcategory', sa.String(100), nullable=False),
        sa.Column('grade', sa.String(100), nullable=False, server_default='Standard'),
        sa.Column('image_ref', sa.String(255), nullable=False),
        sa.Column('price', sa.Float(), nullable=False),
        sa.Column('price_unit', sa.String(50), nullable=False),
        sa.Column('stock_availability', sa.String(50), nullable=False),
        sa.Column('stock_quantity', sa.Integer(), nullable=True),
        sa.Column('status', sa.String(50), nullable=False, server_default='Registered'),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint('identity_token', name='uq_stone_blocks_identity_token'),
        sa.CheckConstraint('price >= 0', name='stone_blocks_price_check'),
        sa.CheckConstraint(
            'stock_quantity IS NULL OR stock_quantity >= 0',
            name='stone_blocks_stock_quantity_check'
        ),
    )

    op.create_index('ix_stone_blocks_status', 'stone_blocks', ['status'])
    op.create_index('ix_stone_blocks_category', 'stone_blocks', ['category'])
    op.create_index('ix_stone_blocks_created_at', 'stone_blocks', ['created_at'])


def downgrade() -> None:
    op.drop_index('ix_stone_blocks_created_at', table_name='stone_blocks')
    op.drop_index('ix_stone_blocks_category', table_name='stone_blocks')
    op.drop_index('ix_stone_blocks_status', table_name='stone_blocks')
    op.drop_table('stone_blocks')
