"""
Supabase DB Setup Instructions

Run the following SQL script manually in the Supabase SQL Editor
to create the `tasks`, `messages` and `agent_instructions` tables.
"""

from copilot.core.logging import logger

create_tables_sql = """
-- Workflow tasks
CREATE TABLE IF NOT EXISTS tasks (
    id BIGSERIAL PRIMARY KEY,
    user_id UUID NOT NULL,
    kind TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'queued'
        CHECK (status IN ('queued', 'running', 'waiting', 'done', 'failed', 'cancelled')),
    input JSONB DEFAULT '{}'::jsonb,
    state JSONB DEFAULT '{}'::jsonb,
    result JSONB,
    error JSONB,
    correlation_key TEXT,
    created_at TIMESTAMP WITH TIME ZONE DEFAULT NOW(),
    updated_at TIMESTAMP WITH TIME ZONE DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS idx_tasks_user_id ON tasks(user_id);
CREATE INDEX IF NOT EXISTS idx_tasks_status ON tasks(status);

-- One live task per (user, correlation key); failed/cancelled tasks release the key
CREATE UNIQUE INDEX IF NOT EXISTS idx_tasks_live_correlation_key
    ON tasks(user_id, correlation_key)
    WHERE correlation_key IS NOT NULL AND status NOT IN ('failed', 'cancelled');

-- Conversation messages (append-only)
CREATE TABLE IF NOT EXISTS messages (
    id BIGSERIAL PRIMARY KEY,
    user_id UUID NOT NULL,
    role TEXT NOT NULL CHECK (role IN ('user', 'assistant', 'tool', 'system')),
    content TEXT,
    tool_name TEXT,
    tool_args JSONB,
    tool_result JSONB,
    thread_id TEXT,
    task_id BIGINT REFERENCES tasks(id) ON DELETE SET NULL,
    created_at TIMESTAMP WITH TIME ZONE DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS idx_messages_user_id ON messages(user_id);
CREATE INDEX IF NOT EXISTS idx_messages_thread_id ON messages(thread_id);
CREATE INDEX IF NOT EXISTS idx_messages_task_id ON messages(task_id);
CREATE INDEX IF NOT EXISTS idx_messages_created_at ON messages(created_at);

-- Standing instructions
CREATE TABLE IF NOT EXISTS agent_instructions (
    id BIGSERIAL PRIMARY KEY,
    user_id UUID NOT NULL,
    title TEXT NOT NULL,
    content TEXT NOT NULL,
    enabled BOOLEAN NOT NULL DEFAULT TRUE,
    created_at TIMESTAMP WITH TIME ZONE DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS idx_agent_instructions_user_id ON agent_instructions(user_id);

-- Enable Row-Level Security (RLS)
ALTER TABLE tasks ENABLE ROW LEVEL SECURITY;
ALTER TABLE messages ENABLE ROW LEVEL SECURITY;
ALTER TABLE agent_instructions ENABLE ROW LEVEL SECURITY;

CREATE POLICY tasks_policy_owner ON tasks
  USING ((select auth.uid()) = user_id);

CREATE POLICY messages_policy_owner ON messages
  USING ((select auth.uid()) = user_id);

CREATE POLICY agent_instructions_policy_owner ON agent_instructions
  USING ((select auth.uid()) = user_id);
"""


def print_setup_instructions():
    logger.info("Run the following SQL manually in Supabase SQL Editor:\n\n{}", create_tables_sql)


if __name__ == "__main__":
    print_setup_instructions()
