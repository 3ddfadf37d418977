"""
inbox_assistant package

Assistant-driven inbox handling: scheduled Handle-Inbox and Daily-Report
jobs and a Slack chat worker, all running hosted assistants whose tool calls
are executed against Gmail, Slack, Trello and an outbound mailer.
"""

__all__ = [
    "config",
    "logging_config",
    "models",
    "storage",
    "assistant_client",
    "threads",
    "gmail_client",
    "providers",
    "prompts",
    "tools",
    "dispatcher",
    "orchestrator",
    "jobs",
    "assistants",
]
