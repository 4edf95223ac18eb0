"""create round, prediction, participant and leaderboard tables

Revision ID: 5c0d7e9a1f20
Revises:
Create Date: 2026-10-19 00:00:00

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '5c0d7e9a1f20'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    insp = sa.inspect(bind)
    existing_tables = set(insp.get_table_names())

    if 'participant' not in existing_tables:
        op.create_table(
            'participant',
            sa.Column('id', sa.String(length=64), primary_key=True),
            sa.Column('display_name', sa.String(length=32), nullable=False),
            sa.Column('avatar_color', sa.String(length=7), nullable=False),
            sa.Column('created_at', sa.Float(), nullable=False),
        )

    if 'round' not in existing_tables:
        op.create_table(
            'round',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('start_time', sa.Float(), nullable=False),
            sa.Column('lock_time', sa.Float(), nullable=False),
            sa.Column('end_time', sa.Float(), nullable=False),
            sa.Column('status', sa.String(length=16), nullable=False),
            sa.Column('open_price', sa.Float(), nullable=True),
            sa.Column('close_price', sa.Float(), nullable=True),
            sa.Column('activated_at', sa.Float(), nullable=True),
            sa.Column('completed_at', sa.Float(), nullable=True),
            sa.Column('open_slot', sa.Integer(), nullable=True, unique=True),
        )
        op.create_index('ix_round_start_time', 'round', ['start_time'])
        op.create_index('ix_round_status', 'round', ['status'])

    if 'prediction' not in existing_tables:
        op.create_table(
            'prediction',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('round_id', sa.Integer(), sa.ForeignKey('round.id'), nullable=False),
            sa.Column('participant_id', sa.String(length=64), sa.ForeignKey('participant.id'), nullable=False),
            sa.Column('target_value', sa.Float(), nullable=False),
            sa.Column('path', sa.Text(), nullable=True),
            sa.Column('submitted_at', sa.Float(), nullable=False),
            sa.Column('version', sa.Integer(), nullable=False),
            sa.Column('accuracy', sa.Float(), nullable=True),
            sa.Column('rank', sa.Integer(), nullable=True),
            sa.UniqueConstraint('round_id', 'participant_id', name='uq_prediction_round_participant'),
        )
        op.create_index('ix_prediction_round_id', 'prediction', ['round_id'])
        op.create_index('ix_prediction_participant_id', 'prediction', ['participant_id'])

    if 'leaderboard_entry' not in existing_tables:
        op.create_table(
            'leaderboard_entry',
            sa.Column('participant_id', sa.String(length=64), sa.ForeignKey('participant.id'), primary_key=True),
            sa.Column('total_predictions', sa.Integer(), nullable=False),
            sa.Column('average_accuracy', sa.Float(), nullable=False),
            sa.Column('best_accuracy', sa.Float(), nullable=False),
            sa.Column('last_round_id', sa.Integer(), nullable=True),
            sa.Column('updated_at', sa.Float(), nullable=True),
        )

    if 'aggregated_round' not in existing_tables:
        op.create_table(
            'aggregated_round',
            sa.Column('round_id', sa.Integer(), sa.ForeignKey('round.id'), primary_key=True),
            sa.Column('aggregated_at', sa.Float(), nullable=False),
        )


def downgrade():
    op.drop_table('aggregated_round')
    op.drop_table('leaderboard_entry')
    op.drop_index('ix_prediction_participant_id', table_name='prediction')
    op.drop_index('ix_prediction_round_id', table_name='prediction')
    op.drop_table('prediction')
    op.drop_index('ix_round_status', table_name='round')
    op.drop_index('ix_round_start_time', table_name='round')
    op.drop_table('round')
    op.drop_table('participant')
