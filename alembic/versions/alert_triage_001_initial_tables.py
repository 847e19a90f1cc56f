"""create alert triage tables

Revision ID: alert_triage_001
Revises:
Create Date: 2026-10-18

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = 'alert_triage_001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'alert_rules',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('organization_id', sa.String(), nullable=True),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('conditions', sa.JSON(), nullable=False),
        sa.Column('severity', sa.String(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=True),
        sa.Column('is_system', sa.Boolean(), nullable=True),
        sa.Column('cooldown_minutes', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_alert_rules_organization_id'), 'alert_rules', ['organization_id'], unique=False)

    op.create_table(
        'alerts',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('organization_id', sa.String(), nullable=False),
        sa.Column('patient_id', sa.String(), nullable=False),
        sa.Column('rule_id', sa.String(), nullable=True),
        sa.Column('clinician_id', sa.String(), nullable=True),
        sa.Column('severity', sa.String(), nullable=False),
        sa.Column('status', sa.String(), nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('facts', sa.JSON(), nullable=False),
        sa.Column('risk_score', sa.Float(), nullable=True),
        sa.Column('risk_components', sa.JSON(), nullable=True),
        sa.Column('priority_rank', sa.Integer(), nullable=True),
        sa.Column('triggered_at', sa.DateTime(), nullable=False),
        sa.Column('sla_breach_time', sa.DateTime(), nullable=True),
        sa.Column('acknowledged_at', sa.DateTime(), nullable=True),
        sa.Column('acknowledged_by_id', sa.String(), nullable=True),
        sa.Column('resolved_at', sa.DateTime(), nullable=True),
        sa.Column('resolved_by_id', sa.String(), nullable=True),
        sa.Column('claimed_by_id', sa.String(), nullable=True),
        sa.Column('claimed_at', sa.DateTime(), nullable=True),
        sa.Column('snoozed_until', sa.DateTime(), nullable=True),
        sa.Column('snoozed_by_id', sa.String(), nullable=True),
        sa.Column('snoozed_at', sa.DateTime(), nullable=True),
        sa.Column('is_suppressed', sa.Boolean(), nullable=False),
        sa.Column('suppress_reason', sa.String(), nullable=True),
        sa.Column('suppress_notes', sa.Text(), nullable=True),
        sa.Column('suppressed_at', sa.DateTime(), nullable=True),
        sa.Column('suppressed_by_id', sa.String(), nullable=True),
        sa.Column('is_escalated', sa.Boolean(), nullable=False),
        sa.Column('escalated_to_id', sa.String(), nullable=True),
        sa.Column('escalated_at', sa.DateTime(), nullable=True),
        sa.Column('escalation_level', sa.Integer(), nullable=False),
        sa.Column('escalation_reason', sa.Text(), nullable=True),
        sa.Column('resolution_notes', sa.Text(), nullable=True),
        sa.Column('intervention_type', sa.String(), nullable=True),
        sa.Column('patient_outcome', sa.String(), nullable=True),
        sa.Column('time_spent_minutes', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['rule_id'], ['alert_rules.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_alerts_organization_id'), 'alerts', ['organization_id'], unique=False)
    op.create_index(op.f('ix_alerts_patient_id'), 'alerts', ['patient_id'], unique=False)
    op.create_index(op.f('ix_alerts_rule_id'), 'alerts', ['rule_id'], unique=False)
    op.create_index(op.f('ix_alerts_clinician_id'), 'alerts', ['clinician_id'], unique=False)
    op.create_index(op.f('ix_alerts_claimed_by_id'), 'alerts', ['claimed_by_id'], unique=False)
    op.create_index('idx_alerts_org_status', 'alerts', ['organization_id', 'status'], unique=False)
    op.create_index('idx_alerts_patient_rule_triggered', 'alerts', ['patient_id', 'rule_id', 'triggered_at'], unique=False)
    op.create_index('idx_alerts_sla_breach', 'alerts', ['status', 'sla_breach_time'], unique=False)

    op.create_table(
        'alert_audit_entries',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('alert_id', sa.String(), nullable=False),
        sa.Column('organization_id', sa.String(), nullable=True),
        sa.Column('actor_id', sa.String(), nullable=True),
        sa.Column('action', sa.String(), nullable=False),
        sa.Column('old_values', sa.JSON(), nullable=True),
        sa.Column('new_values', sa.JSON(), nullable=True),
        sa.Column('metadata', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['alert_id'], ['alerts.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_alert_audit_entries_alert_id'), 'alert_audit_entries', ['alert_id'], unique=False)
    op.create_index(op.f('ix_alert_audit_entries_organization_id'), 'alert_audit_entries', ['organization_id'], unique=False)

    op.create_table(
        'assessment_reminder_logs',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('patient_id', sa.String(), nullable=False),
        sa.Column('enrollment_id', sa.String(), nullable=True),
        sa.Column('template_id', sa.String(), nullable=False),
        sa.Column('channel', sa.String(), nullable=True),
        sa.Column('sent_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(
        'idx_reminder_patient_template_sent',
        'assessment_reminder_logs',
        ['patient_id', 'template_id', 'sent_at'],
        unique=False
    )


def downgrade():
    op.drop_index('idx_reminder_patient_template_sent', table_name='assessment_reminder_logs')
    op.drop_table('assessment_reminder_logs')

    op.drop_index(op.f('ix_alert_audit_entries_organization_id'), table_name='alert_audit_entries')
    op.drop_index(op.f('ix_alert_audit_entries_alert_id'), table_name='alert_audit_entries')
    op.drop_table('alert_audit_entries')

    op.drop_index('idx_alerts_sla_breach', table_name='alerts')
    op.drop_index('idx_alerts_patient_rule_triggered', table_name='alerts')
    op.drop_index('idx_alerts_org_status', table_name='alerts')
    op.drop_index(op.f('ix_alerts_claimed_by_id'), table_name='alerts')
    op.drop_index(op.f('ix_alerts_clinician_id'), table_name='alerts')
    op.drop_index(op.f('ix_alerts_rule_id'), table_name='alerts')
    op.drop_index(op.f('ix_alerts_patient_id'), table_name='alerts')
    op.drop_index(op.f('ix_alerts_organization_id'), table_name='alerts')
    op.drop_table('alerts')

    op.drop_index(op.f('ix_alert_rules_organization_id'), table_name='alert_rules')
    op.drop_table('alert_rules')
