"""approval_record_immutability_triggers

Revision ID: 8b4e6d2c1a57
Revises: 3f1c2a9b7d10
Create Date: 2026-09-28 15:03:41.902114

"""
from typing import Sequence, Union

from alembic import op


# revision identifiers, used by Alembic.
revision: str = '8b4e6d2c1a57'
down_revision: Union[str, Sequence[str], None] = '3f1c2a9b7d10'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.execute(
        """
        CREATE OR REPLACE FUNCTION mockup_stage_approvals_block_mutation()
        RETURNS trigger AS $$
        BEGIN
            RAISE EXCEPTION 'mockup_stage_approvals is append-only';
        END;
        $$ LANGUAGE plpgsql;

        DROP TRIGGER IF EXISTS trg_mockup_stage_approvals_block_update ON mockup_stage_approvals;
        CREATE TRIGGER trg_mockup_stage_approvals_block_update
        BEFORE UPDATE ON mockup_stage_approvals
        FOR EACH ROW
        EXECUTE FUNCTION mockup_stage_approvals_block_mutation();

        DROP TRIGGER IF EXISTS trg_mockup_stage_approvals_block_delete ON mockup_stage_approvals;
        CREATE TRIGGER trg_mockup_stage_approvals_block_delete
        BEFORE DELETE ON mockup_stage_approvals
        FOR EACH ROW
        EXECUTE FUNCTION mockup_stage_approvals_block_mutation();
        """
    )


def downgrade() -> None:
    """Downgrade schema."""
    op.execute(
        """
        DROP TRIGGER IF EXISTS trg_mockup_stage_approvals_block_update ON mockup_stage_approvals;
        DROP TRIGGER IF EXISTS trg_mockup_stage_approvals_block_delete ON mockup_stage_approvals;
        DROP FUNCTION IF EXISTS mockup_stage_approvals_block_mutation();
        """
    )
