"""Booking engine schema: rooms, rates, add-ons, coupons, bookings.

Revision ID: 001_booking_engine
Revises:
Create Date: 2026-10-19
"""

from __future__ import annotations

from alembic import op

revision = "001_booking_engine"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.execute('CREATE EXTENSION IF NOT EXISTS "pgcrypto"')

    op.execute(
        """
        CREATE TABLE rooms (
            id uuid PRIMARY KEY DEFAULT gen_random_uuid(),
            name text NOT NULL,
            base_price_cents integer NOT NULL CHECK (base_price_cents >= 0),
            pricing_mode text NOT NULL DEFAULT 'per_unit'
                CHECK (pricing_mode IN ('per_unit', 'per_person', 'per_person_sharing')),
            max_guests integer NOT NULL DEFAULT 2 CHECK (max_guests >= 1),
            child_free_until_age integer NOT NULL DEFAULT 0,
            child_age_limit integer NOT NULL DEFAULT 12,
            child_price_per_night_cents integer,
            additional_person_rate_cents integer,
            min_stay_nights integer NOT NULL DEFAULT 1 CHECK (min_stay_nights >= 1),
            max_stay_nights integer,
            total_units integer NOT NULL DEFAULT 1 CHECK (total_units >= 0),
            currency text NOT NULL DEFAULT 'ZAR',
            is_active boolean NOT NULL DEFAULT true,
            created_at timestamptz NOT NULL DEFAULT now(),
            updated_at timestamptz NOT NULL DEFAULT now(),
            CHECK (child_free_until_age <= child_age_limit),
            CHECK (max_stay_nights IS NULL OR max_stay_nights >= min_stay_nights)
        )
        """
    )

    op.execute(
        """
        CREATE TABLE seasonal_rates (
            id uuid PRIMARY KEY DEFAULT gen_random_uuid(),
            room_id uuid NOT NULL REFERENCES rooms(id) ON DELETE CASCADE,
            name text NOT NULL,
            start_date date NOT NULL,
            end_date date NOT NULL,
            price_per_night_cents integer NOT NULL CHECK (price_per_night_cents >= 0),
            priority integer NOT NULL DEFAULT 0,
            is_active boolean NOT NULL DEFAULT true,
            created_at timestamptz NOT NULL DEFAULT now(),
            CHECK (end_date >= start_date)
        )
        """
    )
    op.execute(
        "CREATE INDEX idx_seasonal_rates_room_dates ON seasonal_rates (room_id, start_date, end_date)"
    )

    op.execute(
        """
        CREATE TABLE addons (
            id uuid PRIMARY KEY DEFAULT gen_random_uuid(),
            name text NOT NULL,
            price_cents integer NOT NULL CHECK (price_cents >= 0),
            pricing_type text NOT NULL DEFAULT 'per_booking'
                CHECK (pricing_type IN ('per_booking', 'per_night', 'per_guest', 'per_guest_per_night')),
            max_quantity integer NOT NULL DEFAULT 10 CHECK (max_quantity >= 1),
            is_active boolean NOT NULL DEFAULT true,
            created_at timestamptz NOT NULL DEFAULT now()
        )
        """
    )

    op.execute(
        """
        CREATE TABLE coupons (
            id uuid PRIMARY KEY DEFAULT gen_random_uuid(),
            code text NOT NULL,
            name text NOT NULL DEFAULT '',
            discount_type text NOT NULL
                CHECK (discount_type IN ('percentage', 'fixed_amount', 'free_nights')),
            discount_value numeric(12, 2) NOT NULL CHECK (discount_value >= 0),
            applicable_room_ids uuid[] NOT NULL DEFAULT '{}',
            valid_from date,
            valid_until date,
            min_nights integer,
            min_booking_amount_cents integer,
            max_uses integer,
            max_uses_per_customer integer,
            current_uses integer NOT NULL DEFAULT 0,
            excluded_customer_emails text[] NOT NULL DEFAULT '{}',
            is_active boolean NOT NULL DEFAULT true,
            created_at timestamptz NOT NULL DEFAULT now(),
            updated_at timestamptz NOT NULL DEFAULT now()
        )
        """
    )
    op.execute("CREATE UNIQUE INDEX uq_coupons_code ON coupons (lower(code))")

    op.execute(
        """
        CREATE TABLE bookings (
            id uuid PRIMARY KEY,
            reference text NOT NULL UNIQUE,
            guest_name text NOT NULL,
            guest_email text NOT NULL,
            guest_phone text NOT NULL,
            special_requests text NOT NULL DEFAULT '',
            check_in date NOT NULL,
            check_out date NOT NULL,
            line_items jsonb NOT NULL DEFAULT '[]'::jsonb,
            addon_lines jsonb NOT NULL DEFAULT '[]'::jsonb,
            subtotal_cents integer NOT NULL CHECK (subtotal_cents >= 0),
            discount_cents integer NOT NULL DEFAULT 0 CHECK (discount_cents >= 0),
            total_cents integer NOT NULL CHECK (total_cents >= 0),
            currency text NOT NULL DEFAULT 'ZAR',
            status text NOT NULL
                CHECK (status IN ('draft', 'pending', 'paid', 'payment_failed', 'cart_abandoned')),
            payment_method text CHECK (payment_method IN ('paystack', 'eft')),
            payment_reference text,
            failure_reason text,
            retry_count integer NOT NULL DEFAULT 0,
            coupon_id uuid REFERENCES coupons(id),
            coupon_code text,
            created_at timestamptz NOT NULL DEFAULT now(),
            updated_at timestamptz NOT NULL DEFAULT now(),
            CHECK (check_out > check_in)
        )
        """
    )
    op.execute("CREATE INDEX idx_bookings_payment_reference ON bookings (payment_reference)")
    op.execute("CREATE INDEX idx_bookings_stay ON bookings (check_in, check_out) WHERE status IN ('pending', 'paid')")

    op.execute(
        """
        CREATE TABLE booking_status_history (
            id bigserial PRIMARY KEY,
            booking_id uuid NOT NULL REFERENCES bookings(id) ON DELETE CASCADE,
            from_status text,
            to_status text NOT NULL,
            reason text,
            created_at timestamptz NOT NULL DEFAULT now()
        )
        """
    )
    op.execute("CREATE INDEX idx_booking_status_history_booking ON booking_status_history (booking_id)")

    op.execute(
        """
        CREATE TABLE coupon_usage (
            id bigserial PRIMARY KEY,
            coupon_id uuid NOT NULL REFERENCES coupons(id),
            booking_id uuid NOT NULL REFERENCES bookings(id) ON DELETE CASCADE,
            customer_email text NOT NULL,
            discount_cents integer NOT NULL,
            original_cents integer NOT NULL,
            final_cents integer NOT NULL,
            created_at timestamptz NOT NULL DEFAULT now(),
            UNIQUE (coupon_id, booking_id)
        )
        """
    )
    op.execute("CREATE INDEX idx_coupon_usage_customer ON coupon_usage (coupon_id, lower(customer_email))")

    op.execute(
        """
        CREATE TABLE processed_events (
            id bigserial PRIMARY KEY,
            source text NOT NULL,
            external_id text NOT NULL,
            created_at timestamptz NOT NULL DEFAULT now(),
            UNIQUE (source, external_id)
        )
        """
    )


def downgrade() -> None:
    raise NotImplementedError("Downgrade not supported")
