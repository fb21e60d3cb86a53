"""Initial schema - clients, earnings log and epoch aggregates

Revision ID: 001
Revises:
Create Date: 2025-01-20 12:00:00.000000

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
    op.create_table('clients',
        sa.Column('address', sa.String(length=128), nullable=False, comment='Soarchain client address'),
        sa.Column('pub_key', sa.String(length=256), nullable=False, comment='Last observed public key'),
        sa.Column('alternate_address', sa.String(length=128), nullable=True, comment='Secondary identity, e.g. a Solana wallet'),
        sa.Column('total_lifetime_earnings', sa.BigInteger(), nullable=False, comment='Sum of all earnings records in base units'),
        sa.Column('last_activity_time', sa.DateTime(timezone=True), nullable=True, comment='Processing time of the last applied challenge'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('address')
    )
    op.create_index('idx_clients_alternate_address', 'clients', ['alternate_address'])
    op.create_index('idx_clients_pub_key', 'clients', ['pub_key'])
    op.create_index('idx_clients_last_activity', 'clients', ['last_activity_time'])

    op.create_table('client_earnings',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('client_address', sa.String(length=128), nullable=False, comment='Primary address of the earning client'),
        sa.Column('amount', sa.BigInteger(), nullable=False, comment='Amount in base units'),
        sa.Column('observed_at', sa.DateTime(timezone=True), nullable=False, comment='Processing time, not chain time'),
        sa.ForeignKeyConstraint(['client_address'], ['clients.address'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_client_earnings_client_time', 'client_earnings', ['client_address', 'observed_at'])
    op.create_index('idx_client_earnings_observed_at', 'client_earnings', ['observed_at'])

    op.create_table('epoch_earnings',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('client_address', sa.String(length=128), nullable=False, comment='Primary address of the earning client'),
        sa.Column('epoch_number', sa.BigInteger(), nullable=False, comment='Chain epoch counter'),
        sa.Column('start_time', sa.DateTime(timezone=True), nullable=False),
        sa.Column('end_time', sa.DateTime(timezone=True), nullable=False),
        sa.Column('total_earnings', sa.BigInteger(), nullable=False, comment='Sum of earnings in this epoch, base units'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['client_address'], ['clients.address'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('client_address', 'epoch_number', name='uq_epoch_earnings_client_epoch')
    )
    op.create_index('idx_epoch_earnings_epoch', 'epoch_earnings', ['epoch_number'])


def downgrade() -> None:
    op.drop_index('idx_epoch_earnings_epoch', table_name='epoch_earnings')
    op.drop_table('epoch_earnings')

    op.drop_index('idx_client_earnings_observed_at', table_name='client_earnings')
    op.drop_index('idx_client_earnings_client_time', table_name='client_earnings')
    op.drop_table('client_earnings')

    op.drop_index('idx_clients_last_activity', table_name='clients')
    op.drop_index('idx_clients_pub_key', table_name='clients')
    op.drop_index('idx_clients_alternate_address', table_name='clients')
    op.drop_table('clients')
