"""
Defines the database schema for studygenius using a SQL string constant.

Timestamps are stored as UTC in plain TIMESTAMP columns; db_utils attaches
and strips the timezone when marshalling.
"""

DB_SCHEMA_SQL = """
    CREATE TABLE IF NOT EXISTS decks (
        deck_id VARCHAR PRIMARY KEY,
        title VARCHAR NOT NULL,
        description VARCHAR,
        created_at TIMESTAMP NOT NULL
    );

    CREATE TABLE IF NOT EXISTS cards (
        card_id UUID PRIMARY KEY,
        deck_id VARCHAR NOT NULL,
        question VARCHAR NOT NULL,
        answer VARCHAR NOT NULL,
        ease_factor DOUBLE NOT NULL,
        interval_days DOUBLE NOT NULL DEFAULT 0,
        review_count INTEGER NOT NULL DEFAULT 0,
        last_reviewed TIMESTAMP NOT NULL,
        next_review TIMESTAMP NOT NULL,
        created_at TIMESTAMP NOT NULL,
        updated_at TIMESTAMP NOT NULL
    );

    CREATE SEQUENCE IF NOT EXISTS review_seq;

    CREATE TABLE IF NOT EXISTS reviews (
        review_id INTEGER PRIMARY KEY DEFAULT nextval('review_seq'),
        card_id UUID NOT NULL,
        session_id UUID,
        ts TIMESTAMP NOT NULL,
        rating VARCHAR NOT NULL
            CHECK (rating IN ('again', 'hard', 'medium', 'easy')),
        ease_before DOUBLE NOT NULL,
        ease_after DOUBLE NOT NULL,
        interval_days DOUBLE NOT NULL,
        next_review TIMESTAMP NOT NULL,
        time_spent_ms BIGINT
    );

    CREATE TABLE IF NOT EXISTS study_sessions (
        session_id UUID PRIMARY KEY,
        deck_id VARCHAR NOT NULL,
        started_at TIMESTAMP NOT NULL,
        ended_at TIMESTAMP NOT NULL,
        duration_ms BIGINT NOT NULL,
        total_cards INTEGER DEFAULT 0,
        cards_reviewed INTEGER DEFAULT 0,
        correct_count INTEGER DEFAULT 0
    );

    CREATE INDEX IF NOT EXISTS idx_reviews_card_id ON reviews (card_id);
    CREATE INDEX IF NOT EXISTS idx_reviews_session_id ON reviews (session_id);
"""

DROP_TABLES_SQL = """
    DROP TABLE IF EXISTS reviews CASCADE;
    DROP TABLE IF EXISTS study_sessions CASCADE;
    DROP TABLE IF EXISTS cards CASCADE;
    DROP TABLE IF EXISTS decks CASCADE;
    DROP SEQUENCE IF EXISTS review_seq;
"""
