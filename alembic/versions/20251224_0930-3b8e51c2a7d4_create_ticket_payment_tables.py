"""create_ticket_payment_tables

Revision ID: 3b8e51c2a7d4
Revises:
Create Date: 2025-12-24 09:30:12.418207

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '3b8e51c2a7d4'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'customers',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('name', sa.String(length=200), nullable=False, comment='客户姓名'),
        sa.Column('email', sa.String(length=255), nullable=False, comment='邮箱'),
        sa.Column('phone', sa.String(length=50), nullable=True, comment='手机号'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id', name='pk_customers'),
    )
    op.create_index('ix_customers_id', 'customers', ['id'], unique=False)
    op.create_index('ix_customers_email', 'customers', ['email'], unique=False)

    op.create_table(
        'tickets',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('ticket_no', sa.String(length=32), nullable=False, comment='工单号 WAC-YYYY-NNNNNN'),
        sa.Column('customer_id', sa.Integer(), nullable=False, comment='客户ID'),
        sa.Column('status', sa.String(length=30), nullable=False, server_default='DRAFT', comment='工单状态'),
        sa.Column('payment_status', sa.String(length=20), nullable=False, server_default='PENDING', comment='最近一次对账的支付状态'),
        sa.Column('issue_type', sa.String(length=100), nullable=True, comment='问题类型'),
        sa.Column('description', sa.Text(), nullable=True, comment='问题描述'),
        sa.Column('drive_folder_id', sa.String(length=200), nullable=True, comment='远端文件夹ID'),
        sa.Column('drive_folder_url', sa.String(length=500), nullable=True, comment='远端文件夹URL'),
        sa.Column('sheet_row_index', sa.Integer(), nullable=True, comment='跟踪表行号'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False, comment='创建时间'),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False, comment='更新时间'),
        sa.Column('closed_at', sa.DateTime(timezone=True), nullable=True, comment='关闭时间'),
        sa.ForeignKeyConstraint(['customer_id'], ['customers.id'], name='fk_tickets_customer_id_customers'),
        sa.PrimaryKeyConstraint('id', name='pk_tickets'),
    )
    op.create_index('ix_tickets_id', 'tickets', ['id'], unique=False)
    op.create_index('ix_tickets_ticket_no', 'tickets', ['ticket_no'], unique=True)
    op.create_index('ix_tickets_customer_id', 'tickets', ['customer_id'], unique=False)
    op.create_index('ix_tickets_status', 'tickets', ['status'], unique=False)
    op.create_index('ix_tickets_payment_status', 'tickets', ['payment_status'], unique=False)
    op.create_index('ix_tickets_status_payment_created', 'tickets', ['status', 'payment_status', 'created_at'], unique=False)

    op.create_table(
        'attachments',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('ticket_id', sa.Integer(), nullable=False),
        sa.Column('file_name', sa.String(length=255), nullable=False, comment='文件名'),
        sa.Column('mime_type', sa.String(length=100), nullable=False, comment='MIME类型'),
        sa.Column('size', sa.Integer(), nullable=False, comment='字节数'),
        sa.Column('file_data', sa.LargeBinary(), nullable=True, comment='本地暂存的文件内容'),
        sa.Column('remote_file_id', sa.String(length=200), nullable=True, comment='远端文件ID'),
        sa.Column('remote_file_url', sa.String(length=500), nullable=True, comment='远端文件URL'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['ticket_id'], ['tickets.id'], name='fk_attachments_ticket_id_tickets', ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id', name='pk_attachments'),
    )
    op.create_index('ix_attachments_id', 'attachments', ['id'], unique=False)
    op.create_index('ix_attachments_ticket_id', 'attachments', ['ticket_id'], unique=False)

    op.create_table(
        'payments',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('order_id', sa.String(length=100), nullable=False, comment='订单ID'),
        sa.Column('ticket_id', sa.Integer(), nullable=False, comment='所属工单ID'),
        sa.Column('provider', sa.String(length=50), nullable=False, server_default='QRIS', comment='支付渠道'),
        sa.Column('amount', sa.Integer(), nullable=False, comment='支付金额（含唯一码）'),
        sa.Column('currency', sa.String(length=3), nullable=False, server_default='IDR', comment='货币代码 ISO-4217'),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='PENDING', comment='支付状态: PENDING/PAID/FAILED/EXPIRED/REFUNDED/REJECTED'),
        sa.Column('version', sa.Integer(), nullable=False, server_default='0', comment='乐观锁版本号'),
        sa.Column('payload', sa.JSON(), nullable=True, comment='结构化载荷：唯一码、状态历史、渠道字段'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False, comment='创建时间'),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False, comment='更新时间'),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True, comment='支付完成时间'),
        sa.ForeignKeyConstraint(['ticket_id'], ['tickets.id'], name='fk_payments_ticket_id_tickets', ondelete='RESTRICT'),
        sa.PrimaryKeyConstraint('id', name='pk_payments'),
    )
    op.create_index('ix_payments_id', 'payments', ['id'], unique=False)
    op.create_index('ix_payments_order_id', 'payments', ['order_id'], unique=True)
    op.create_index('ix_payments_ticket_id', 'payments', ['ticket_id'], unique=False)
    op.create_index('ix_payments_status', 'payments', ['status'], unique=False)
    op.create_index('ix_payments_provider_status_amount', 'payments', ['provider', 'status', 'amount'], unique=False)
    op.create_index('ix_payments_created_at', 'payments', ['created_at'], unique=False)

    op.create_table(
        'audit_logs',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('actor_id', sa.String(length=100), nullable=False, comment='操作者ID'),
        sa.Column('actor_name', sa.String(length=200), nullable=True, comment='操作者名称'),
        sa.Column('ticket_id', sa.Integer(), nullable=False, comment='关联工单'),
        sa.Column('action', sa.String(length=50), nullable=False, comment='动作类型'),
        sa.Column('before', sa.JSON(), nullable=True, comment='变更前快照'),
        sa.Column('after', sa.JSON(), nullable=True, comment='变更后快照'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False, comment='创建时间'),
        sa.ForeignKeyConstraint(['ticket_id'], ['tickets.id'], name='fk_audit_logs_ticket_id_tickets'),
        sa.PrimaryKeyConstraint('id', name='pk_audit_logs'),
    )
    op.create_index('ix_audit_logs_id', 'audit_logs', ['id'], unique=False)
    op.create_index('ix_audit_logs_actor_id', 'audit_logs', ['actor_id'], unique=False)
    op.create_index('ix_audit_logs_ticket_id', 'audit_logs', ['ticket_id'], unique=False)
    op.create_index('ix_audit_logs_action', 'audit_logs', ['action'], unique=False)
    op.create_index('ix_audit_logs_created_at', 'audit_logs', ['created_at'], unique=False)


def downgrade() -> None:
    op.drop_table('audit_logs')
    op.drop_table('payments')
    op.drop_table('attachments')
    op.drop_table('tickets')
    op.drop_table('customers')
