"""Initial booking tables

Revision ID: 001
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None

appointment_status = sa.Enum(
    'PENDING', 'CANCELLATION_REQUESTED', 'CANCELLED', 'COMPLETED', 'MISSED',
    name='appointment_status',
)
group_status = sa.Enum('DRAFT', 'PENDING', 'FINALIZED', name='group_status')


def _audit_columns():
    return [
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    # Create appointment_groups table
    op.create_table('appointment_groups',
        *_audit_columns(),
        sa.Column('group_at', sa.DateTime(), nullable=False, comment='Shared clinic-local timestamp of every member'),
        sa.Column('notes', sa.Text(), nullable=True, comment='How the group was created'),
        sa.Column('status', group_status, nullable=False, comment='Draft, pending or finalized; finalized is one-way'),
        sa.Column('finalized_at', sa.DateTime(), nullable=True, comment='When staff finalized the group'),
        sa.Column('created_by_user_id', sa.Integer(), nullable=True, comment='User who created the group'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_appointment_groups_group_at', 'appointment_groups', ['group_at'])
    op.create_index('idx_appointment_groups_status', 'appointment_groups', ['status'])

    # Create appointments table
    op.create_table('appointments',
        *_audit_columns(),
        sa.Column('pet_id', sa.Integer(), nullable=False, comment='Id of the pet in the catalog store'),
        sa.Column('category_id', sa.Integer(), nullable=True, comment='Service category id'),
        sa.Column('subtype_id', sa.Integer(), nullable=True, comment='Service subtype id'),
        sa.Column('appointment_at', sa.DateTime(), nullable=False, comment='Clinic-local date and time of the appointment, minute granular'),
        sa.Column('status', appointment_status, nullable=False, comment='Current lifecycle status'),
        sa.Column('requested_by_owner', sa.Boolean(), nullable=False, comment="Booked by the pet owner; shown as 'Requested' while pending"),
        sa.Column('group_id', sa.Integer(), nullable=True, comment='Group this appointment belongs to, if any'),
        sa.Column('notes', sa.Text(), nullable=True, comment='Free-form notes'),
        sa.Column('administered_by', sa.String(length=200), nullable=True, comment='Staff member who administered the service'),
        sa.Column('due_date', sa.Date(), nullable=True, comment='Next due date recorded on completion'),
        sa.Column('completed_at', sa.DateTime(), nullable=True, comment='When the appointment was marked completed'),
        sa.Column('sms_sent_today', sa.Integer(), nullable=False, comment='SMS reminders sent on reminder_counter_date'),
        sa.Column('email_sent_today', sa.Integer(), nullable=False, comment='Email reminders sent on reminder_counter_date'),
        sa.Column('last_sms_sent_at', sa.DateTime(), nullable=True, comment='When the last SMS reminder was handed to the gateway'),
        sa.Column('last_email_sent_at', sa.DateTime(), nullable=True, comment='When the last email reminder was sent'),
        sa.Column('reminder_counter_date', sa.Date(), nullable=True, comment='Day the reminder counters refer to'),
        sa.Column('is_synced', sa.Boolean(), nullable=False, comment='Mirrored to an external calendar'),
        sa.CheckConstraint('sms_sent_today >= 0', name='ck_appointments_sms_sent_non_negative'),
        sa.CheckConstraint('email_sent_today >= 0', name='ck_appointments_email_sent_non_negative'),
        sa.ForeignKeyConstraint(['group_id'], ['appointment_groups.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_appointments_pet_id', 'appointments', ['pet_id'])
    op.create_index('ix_appointments_appointment_at', 'appointments', ['appointment_at'])
    op.create_index('ix_appointments_status', 'appointments', ['status'])
    op.create_index('ix_appointments_group_id', 'appointments', ['group_id'])
    op.create_index('idx_appointments_status_at', 'appointments', ['status', 'appointment_at'])
    op.create_index('idx_appointments_pet_at', 'appointments', ['pet_id', 'appointment_at'])

    # Create appointment_drafts table
    op.create_table('appointment_drafts',
        *_audit_columns(),
        sa.Column('user_id', sa.Integer(), nullable=False, comment='Staff user who created the draft'),
        sa.Column('owner_id', sa.Integer(), nullable=True, comment='Pet owner the draft is staged for'),
        sa.Column('pet_id', sa.Integer(), nullable=False),
        sa.Column('category_id', sa.Integer(), nullable=False),
        sa.Column('subtype_id', sa.Integer(), nullable=False),
        sa.Column('appointment_date', sa.Date(), nullable=False, comment='Requested day'),
        sa.Column('appointment_time', sa.String(length=5), nullable=False, comment='Requested time of day as HH:MM'),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('draft_group_key', sa.String(length=64), nullable=False, comment='Drafts sharing a key convert into one group'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_appointment_drafts_user_id', 'appointment_drafts', ['user_id'])
    op.create_index('ix_appointment_drafts_owner_id', 'appointment_drafts', ['owner_id'])
    op.create_index('ix_appointment_drafts_draft_group_key', 'appointment_drafts', ['draft_group_key'])
    op.create_index('idx_appointment_drafts_slot', 'appointment_drafts', ['appointment_date', 'appointment_time'])

    # Create slot_reservations table
    op.create_table('slot_reservations',
        *_audit_columns(),
        sa.Column('slot_at', sa.DateTime(), nullable=False, comment='Held clinic-local timestamp'),
        sa.Column('appointment_id', sa.Integer(), nullable=True, comment='Ungrouped appointment holding the slot'),
        sa.Column('group_id', sa.Integer(), nullable=True, comment='Group holding the slot'),
        sa.CheckConstraint('(appointment_id IS NULL) <> (group_id IS NULL)', name='ck_slot_reservations_single_holder'),
        sa.ForeignKeyConstraint(['appointment_id'], ['appointments.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['group_id'], ['appointment_groups.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('slot_at', name='uq_slot_reservations_slot_at'),
        sa.UniqueConstraint('appointment_id', name='uq_slot_reservations_appointment'),
        sa.UniqueConstraint('group_id', name='uq_slot_reservations_group'),
    )


def downgrade() -> None:
    op.drop_table('slot_reservations')

    op.drop_index('idx_appointment_drafts_slot', table_name='appointment_drafts')
    op.drop_index('ix_appointment_drafts_draft_group_key', table_name='appointment_drafts')
    op.drop_index('ix_appointment_drafts_owner_id', table_name='appointment_drafts')
    op.drop_index('ix_appointment_drafts_user_id', table_name='appointment_drafts')
    op.drop_table('appointment_drafts')

    op.drop_index('idx_appointments_pet_at', table_name='appointments')
    op.drop_index('idx_appointments_status_at', table_name='appointments')
    op.drop_index('ix_appointments_group_id', table_name='appointments')
    op.drop_index('ix_appointments_status', table_name='appointments')
    op.drop_index('ix_appointments_appointment_at', table_name='appointments')
    op.drop_index('ix_appointments_pet_id', table_name='appointments')
    op.drop_table('appointments')

    op.drop_index('idx_appointment_groups_status', table_name='appointment_groups')
    op.drop_index('ix_appointment_groups_group_at', table_name='appointment_groups')
    op.drop_table('appointment_groups')

    appointment_status.drop(op.get_bind(), checkfirst=True)
    group_status.drop(op.get_bind(), checkfirst=True)
