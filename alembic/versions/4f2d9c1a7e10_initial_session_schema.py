"""initial_session_schema

Revision ID: 4f2d9c1a7e10
Revises:
Create Date: 2026-10-19 12:00:00.000000
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = '4f2d9c1a7e10'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'sessions',
        sa.Column('id', sa.String(length=32), nullable=False),
        sa.Column('code', sa.String(length=16), nullable=False),
        sa.Column('authority_id', sa.String(length=128), nullable=True),
        sa.Column('started', sa.Boolean(), nullable=False),
        sa.Column('active_location_id', sa.String(length=32), nullable=True),
        sa.Column('seq', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_sessions')),
    )
    op.create_index('ix_session_code', 'sessions', ['code'], unique=True)
    op.create_index('ix_session_expires', 'sessions', ['expires_at'])

    op.create_table(
        'locations',
        sa.Column('id', sa.String(length=32), nullable=False),
        sa.Column('session_id', sa.String(length=32), nullable=False),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('image_url', sa.String(length=512), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['session_id'], ['sessions.id'], name=op.f('fk_locations_session_id_sessions'), ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_locations')),
    )
    op.create_index('ix_location_session', 'locations', ['session_id'])

    op.create_table(
        'players',
        sa.Column('id', sa.String(length=32), nullable=False),
        sa.Column('session_id', sa.String(length=32), nullable=False),
        sa.Column('external_id', sa.String(length=128), nullable=False),
        sa.Column('name', sa.String(length=64), nullable=False),
        sa.Column('avatar', sa.String(length=32), nullable=True),
        sa.Column('hp', sa.Integer(), nullable=False),
        sa.Column('currency', sa.Integer(), nullable=False),
        sa.Column('is_authority', sa.Boolean(), nullable=False),
        sa.Column('bio', sa.Text(), nullable=True),
        sa.Column('sheet', sa.Text(), nullable=True),
        sa.Column('location_id', sa.String(length=32), nullable=True),
        sa.Column('joined_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['session_id'], ['sessions.id'], name=op.f('fk_players_session_id_sessions'), ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['location_id'], ['locations.id'], name=op.f('fk_players_location_id_locations'), ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_players')),
    )
    op.create_index('ix_player_session', 'players', ['session_id'])
    op.create_index('ix_player_unique', 'players', ['session_id', 'external_id'], unique=True)

    op.create_table(
        'items',
        sa.Column('id', sa.String(length=32), nullable=False),
        sa.Column('session_id', sa.String(length=32), nullable=False),
        sa.Column('origin_id', sa.String(length=32), nullable=True),
        sa.Column('name', sa.String(length=64), nullable=False),
        sa.Column('qty', sa.Integer(), nullable=False),
        sa.Column('note', sa.Text(), nullable=True),
        sa.Column('kind', sa.String(length=32), nullable=False),
        sa.Column('owner_id', sa.String(length=32), nullable=True),
        sa.Column('location_id', sa.String(length=32), nullable=True),
        sa.Column('seq', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint('qty > 0', name=op.f('ck_items_positive_qty')),
        sa.CheckConstraint('owner_id IS NULL OR location_id IS NULL', name=op.f('ck_items_single_custody')),
        sa.ForeignKeyConstraint(['session_id'], ['sessions.id'], name=op.f('fk_items_session_id_sessions'), ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['owner_id'], ['players.id'], name=op.f('fk_items_owner_id_players'), ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['location_id'], ['locations.id'], name=op.f('fk_items_location_id_locations'), ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_items')),
    )
    op.create_index('ix_item_session', 'items', ['session_id'])
    op.create_index('ix_item_owner', 'items', ['owner_id'])
    op.create_index('ix_item_floor', 'items', ['session_id', 'location_id', 'seq'])

    op.create_table(
        'messages',
        sa.Column('id', sa.String(length=32), nullable=False),
        sa.Column('session_id', sa.String(length=32), nullable=False),
        sa.Column('player_id', sa.String(length=32), nullable=True),
        sa.Column('text', sa.Text(), nullable=False),
        sa.Column('seq', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['session_id'], ['sessions.id'], name=op.f('fk_messages_session_id_sessions'), ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['player_id'], ['players.id'], name=op.f('fk_messages_player_id_players'), ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_messages')),
    )
    op.create_index('ix_message_session_seq', 'messages', ['session_id', 'seq'])

    op.create_table(
        'rolls',
        sa.Column('id', sa.String(length=32), nullable=False),
        sa.Column('session_id', sa.String(length=32), nullable=False),
        sa.Column('player_id', sa.String(length=32), nullable=True),
        sa.Column('die', sa.Integer(), nullable=False),
        sa.Column('result', sa.Integer(), nullable=False),
        sa.Column('seq', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['session_id'], ['sessions.id'], name=op.f('fk_rolls_session_id_sessions'), ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['player_id'], ['players.id'], name=op.f('fk_rolls_player_id_players'), ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_rolls')),
    )
    op.create_index('ix_roll_session_seq', 'rolls', ['session_id', 'seq'])


def downgrade() -> None:
    op.drop_index('ix_roll_session_seq', table_name='rolls')
    op.drop_table('rolls')
    op.drop_index('ix_message_session_seq', table_name='messages')
    op.drop_table('messages')
    op.drop_index('ix_item_floor', table_name='items')
    op.drop_index('ix_item_owner', table_name='items')
    op.drop_index('ix_item_session', table_name='items')
    op.drop_table('items')
    op.drop_index('ix_player_unique', table_name='players')
    op.drop_index('ix_player_session', table_name='players')
    op.drop_table('players')
    op.drop_index('ix_location_session', table_name='locations')
    op.drop_table('locations')
    op.drop_index('ix_session_expires', table_name='sessions')
    op.drop_index('ix_session_code', table_name='sessions')
    op.drop_table('sessions')
