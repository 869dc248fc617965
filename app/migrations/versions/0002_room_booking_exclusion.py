"""Exclusion constraint for overlapping confirmed room bookings

Revision ID: 0002_room_booking_exclusion
Revises: 0001_initial
Create Date: 2026-09-01 09:30:00
"""

from typing import Sequence, Union

from alembic import op


# revision identifiers, used by Alembic.
revision: str = "0002_room_booking_exclusion"
down_revision: Union[str, None] = "0001_initial"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("CREATE EXTENSION IF NOT EXISTS btree_gist")
    op.execute(
        """
        DO $$
        BEGIN
            IF NOT EXISTS (
                SELECT 1 FROM pg_constraint WHERE conname = 'ex_room_bookings_no_overlap'
            ) THEN
                ALTER TABLE room_bookings
                ADD CONSTRAINT ex_room_bookings_no_overlap
                EXCLUDE USING gist (
                    room_id WITH =,
                    tsrange(booking_date + start_time, booking_date + end_time, '[)') WITH &&
                )
                WHERE (status = 'CONFIRMED');
            END IF;
        END $$;
        """
    )


def downgrade() -> None:
    op.execute("ALTER TABLE room_bookings DROP CONSTRAINT IF EXISTS ex_room_bookings_no_overlap")
