"""create user, session, room, room_player and board tables

Revision ID: 4c7d2a9e1b01
Revises:
Create Date: 2026-10-19 00:00:00

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '4c7d2a9e1b01'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'user',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=30), nullable=False),
        sa.Column('username', sa.String(length=64), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('password_hash', sa.String(length=256), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_user_username', 'user', ['username'], unique=True)
    op.create_index('ix_user_email', 'user', ['email'], unique=True)

    op.create_table(
        'session',
        sa.Column('id', sa.String(length=64), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('live_connection_id', sa.String(length=64), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['user.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_session_user_id', 'session', ['user_id'])
    op.create_index('ix_session_created_at', 'session', ['created_at'])

    op.create_table(
        'room',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('code', sa.String(length=6), nullable=False),
        sa.Column('max_players_count', sa.Integer(), nullable=False),
        sa.Column('created_by', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('board_id', sa.Integer(), nullable=True),
        sa.Column('current_turn', sa.Integer(), nullable=True),
        sa.Column('winner', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['created_by'], ['user.id']),
        sa.ForeignKeyConstraint(['current_turn'], ['user.id']),
        sa.ForeignKeyConstraint(['winner'], ['user.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_room_code', 'room', ['code'], unique=True)

    op.create_table(
        'board',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('room_id', sa.Integer(), nullable=False),
        sa.Column('cells_json', sa.Text(), nullable=False),
        sa.Column('move_history_json', sa.Text(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['room_id'], ['room.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('room_id'),
    )

    # room <-> board is circular; add the room side once both tables exist
    with op.batch_alter_table('room') as batch_op:
        batch_op.create_foreign_key('fk_room_board_id', 'board', ['board_id'], ['id'])

    op.create_table(
        'room_player',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('room_id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('sign', sa.String(length=1), nullable=True),
        sa.ForeignKeyConstraint(['room_id'], ['room.id']),
        sa.ForeignKeyConstraint(['user_id'], ['user.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('room_id', 'user_id', name='uq_room_player_user'),
    )
    op.create_index('ix_room_player_room_id', 'room_player', ['room_id'])
    op.create_index('ix_room_player_user_id', 'room_player', ['user_id'])


def downgrade():
    op.drop_index('ix_room_player_user_id', table_name='room_player')
    op.drop_index('ix_room_player_room_id', table_name='room_player')
    op.drop_table('room_player')
    with op.batch_alter_table('room') as batch_op:
        batch_op.drop_constraint('fk_room_board_id', type_='foreignkey')
    op.drop_table('board')
    op.drop_index('ix_room_code', table_name='room')
    op.drop_table('room')
    op.drop_index('ix_session_created_at', table_name='session')
    op.drop_index('ix_session_user_id', table_name='session')
    op.drop_table('session')
    op.drop_index('ix_user_email', table_name='user')
    op.drop_index('ix_user_username', table_name='user')
    op.drop_table('user')
