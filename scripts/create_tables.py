#!/usr/bin/env python3
"""Create the messaging-event tables and database functions for Cave Club."""

import os
import psycopg2
from dotenv import load_dotenv

load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL")

SQL = """
-- 1. members
CREATE TABLE IF NOT EXISTS members (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    cave_id UUID NOT NULL,
    name VARCHAR(255),
    email VARCHAR(255),
    phone VARCHAR(32),
    consent_email BOOLEAN NOT NULL DEFAULT TRUE,
    consent_sms BOOLEAN NOT NULL DEFAULT TRUE,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
CREATE INDEX IF NOT EXISTS idx_members_cave_id ON members(cave_id);
CREATE INDEX IF NOT EXISTS idx_members_email_normalized ON members(LOWER(TRIM(email)));

-- 2. campaigns
CREATE TABLE IF NOT EXISTS campaigns (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    cave_id UUID NOT NULL,
    name VARCHAR(255),
    opened_count INTEGER NOT NULL DEFAULT 0,
    clicked_count INTEGER NOT NULL DEFAULT 0,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
CREATE INDEX IF NOT EXISTS idx_campaigns_cave_id ON campaigns(cave_id);

-- 3. campaign_messages
CREATE TABLE IF NOT EXISTS campaign_messages (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    campaign_id UUID NOT NULL REFERENCES campaigns(id) ON DELETE CASCADE,
    member_id UUID REFERENCES members(id) ON DELETE SET NULL,
    channel VARCHAR(10) NOT NULL,
    external_id VARCHAR(255),
    delivered_at TIMESTAMPTZ,
    opened_at TIMESTAMPTZ,
    clicked_at TIMESTAMPTZ,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
CREATE INDEX IF NOT EXISTS idx_campaign_messages_campaign_id ON campaign_messages(campaign_id);
CREATE UNIQUE INDEX IF NOT EXISTS idx_campaign_messages_external
    ON campaign_messages(external_id, channel) WHERE external_id IS NOT NULL;

-- 4. observability_metric_snapshots
CREATE TABLE IF NOT EXISTS observability_metric_snapshots (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    source VARCHAR(100) NOT NULL,
    request_id VARCHAR(100),
    counters JSONB NOT NULL DEFAULT '{}'::jsonb,
    histograms JSONB NOT NULL DEFAULT '{}'::jsonb,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
"""

MESSAGE_EVENT_FUNCTION = """
CREATE OR REPLACE FUNCTION record_campaign_message_event(
    p_message_id UUID,
    p_event TEXT,
    p_occurred_at TIMESTAMPTZ
)
RETURNS BOOLEAN
LANGUAGE plpgsql
AS $$
DECLARE
    v_campaign_id UUID;
BEGIN
    IF p_event = 'delivered' THEN
        UPDATE campaign_messages SET delivered_at = p_occurred_at
        WHERE id = p_message_id AND delivered_at IS NULL
        RETURNING campaign_id INTO v_campaign_id;
    ELSIF p_event = 'opened' THEN
        UPDATE campaign_messages SET opened_at = p_occurred_at
        WHERE id = p_message_id AND opened_at IS NULL
        RETURNING campaign_id INTO v_campaign_id;
        IF v_campaign_id IS NOT NULL THEN
            UPDATE campaigns SET opened_count = opened_count + 1, updated_at = NOW()
            WHERE id = v_campaign_id;
        END IF;
    ELSIF p_event = 'clicked' THEN
        UPDATE campaign_messages SET clicked_at = p_occurred_at
        WHERE id = p_message_id AND clicked_at IS NULL
        RETURNING campaign_id INTO v_campaign_id;
        IF v_campaign_id IS NOT NULL THEN
            UPDATE campaigns SET clicked_count = clicked_count + 1, updated_at = NOW()
            WHERE id = v_campaign_id;
        END IF;
    ELSE
        RAISE EXCEPTION 'unknown campaign message event: %', p_event;
    END IF;
    RETURN v_campaign_id IS NOT NULL;
END;
$$;
"""

CONSENT_FUNCTIONS = """
CREATE OR REPLACE FUNCTION revoke_member_email_consent(p_email TEXT)
RETURNS INTEGER
LANGUAGE plpgsql
AS $$
DECLARE
    v_updated INTEGER;
BEGIN
    UPDATE members SET consent_email = FALSE, updated_at = NOW()
    WHERE LOWER(TRIM(email)) = p_email;
    GET DIAGNOSTICS v_updated = ROW_COUNT;
    RETURN v_updated;
END;
$$;

CREATE OR REPLACE FUNCTION revoke_member_sms_consent(p_phone TEXT)
RETURNS INTEGER
LANGUAGE plpgsql
AS $$
DECLARE
    v_updated INTEGER;
BEGIN
    UPDATE members SET consent_sms = FALSE, updated_at = NOW()
    WHERE STRPOS(phone, p_phone) > 0;
    GET DIAGNOSTICS v_updated = ROW_COUNT;
    RETURN v_updated;
END;
$$;
"""

def main():
    print("Connecting to database...")
    conn = psycopg2.connect(DATABASE_URL)
    conn.autocommit = True
    cur = conn.cursor()

    print("Creating tables...")
    cur.execute(SQL)

    print("Creating functions...")
    cur.execute(MESSAGE_EVENT_FUNCTION)
    cur.execute(CONSENT_FUNCTIONS)

    # Verify
    cur.execute("SELECT table_name FROM information_schema.tables WHERE table_schema = 'public' ORDER BY table_name;")
    tables = cur.fetchall()
    print(f"\nTables created: {[t[0] for t in tables]}")

    cur.execute("SELECT proname FROM pg_proc WHERE proname IN ('record_campaign_message_event', 'revoke_member_email_consent', 'revoke_member_sms_consent') ORDER BY proname;")
    functions = cur.fetchall()
    print(f"Functions: {[f[0] for f in functions]}")

    cur.close()
    conn.close()
    print("\nDone!")

if __name__ == "__main__":
    main()
