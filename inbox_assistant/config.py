from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Config(BaseSettings):
    """
    Application configuration loaded from environment variables and .env file.

    Every component receives this object at construction time; nothing reads
    the environment directly.
    """

    # Data directory and file paths
    data_dir: Path = Field(default=Path("data"), alias="DATA_DIR")

    thread_store_path: Path = Field(
        default=Path("data") / "assistant_threads.json",
        alias="THREAD_STORE_PATH",
    )
    prompts_dir: Path = Field(
        default=Path("documentation") / "system-prompts",
        alias="PROMPTS_DIR",
    )

    # Assistant service
    openai_api_key: str = Field(default="", alias="OPENAI_API_KEY")
    openai_base_url: str = Field(
        default="https://api.openai.com/v1",
        alias="OPENAI_BASE_URL",
    )
    hi_assistant_id: str = Field(default="", alias="HI_OPENAI_ASSISTANT_ID")
    dare_assistant_id: str = Field(default="", alias="DARE_OPENAI_ASSISTANT_ID")
    chat_assistant_id: str = Field(default="", alias="CHAT_OPENAI_ASSISTANT_ID")

    # Run orchestration
    max_tool_call_attempts: int = Field(default=3, alias="MAX_TOOL_CALL_ATTEMPTS")
    run_poll_interval_seconds: float = Field(
        default=1.0,
        alias="RUN_POLL_INTERVAL_SECONDS",
    )
    http_timeout_seconds: float = Field(default=60.0, alias="HTTP_TIMEOUT_SECONDS")

    # Gmail OAuth (refresh-token flow for unattended jobs)
    gmail_client_id: str = Field(default="", alias="GMAIL_CLIENT_ID")
    gmail_client_secret: str = Field(default="", alias="GMAIL_CLIENT_SECRET")
    gmail_refresh_token: str = Field(default="", alias="GMAIL_REFRESH_TOKEN")
    gmail_credentials_path: Path = Field(
        default=Path("credentials.json"),
        alias="GMAIL_CREDENTIALS_PATH",
    )

    # Gmail label ids for the workflow labels
    gmail_label_id_processed_by_hi: str = Field(
        default="", alias="GMAIL_LABEL_ID_PROCESSED_BY_HI"
    )
    gmail_label_id_to_summarize: str = Field(
        default="", alias="GMAIL_LABEL_ID_TO_SUMMARIZE"
    )
    gmail_label_id_archive_in_3_days: str = Field(
        default="", alias="GMAIL_LABEL_ID_ARCHIVE_IN_3_DAYS"
    )
    gmail_label_id_sent_to_bookkeeping: str = Field(
        default="", alias="GMAIL_LABEL_ID_SENT_TO_BOOKKEEPING"
    )

    # Slack
    slack_bot_token: str = Field(default="", alias="SLACK_BOT_TOKEN")
    slack_bot_user_id: str = Field(default="", alias="SLACK_BOT_USER_ID")
    slack_report_channel_id: str = Field(default="", alias="SLACK_REPORT_CHANNEL_ID")

    # Trello
    trello_api_key: str = Field(default="", alias="TRELLO_API_KEY")
    trello_api_token: str = Field(default="", alias="TRELLO_API_TOKEN")
    trello_inbox_list_id: str = Field(default="", alias="TRELLO_INBOX_LIST_ID")

    # Outbound transactional email
    postmark_server_token: str = Field(default="", alias="POSTMARK_SERVER_TOKEN")
    bookkeeping_email: str = Field(default="", alias="BOOKKEEPING_EMAIL")
    bookkeeping_from_email: str = Field(default="", alias="BOOKKEEPING_FROM_EMAIL")

    # Logging
    log_file: Optional[Path] = Field(default=None, alias="LOG_FILE")

    # Inbox handling
    limit_email_handling: Optional[int] = Field(
        default=None,
        alias="LIMIT_EMAIL_HANDLING",
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_ignore_empty=True,
        populate_by_name=True,
    )

    @field_validator("limit_email_handling", mode="before")
    @classmethod
    def ignore_non_numeric_limit(cls, v):
        # A value that is not a number means no limit.
        if isinstance(v, str):
            try:
                return int(v.strip())
            except ValueError:
                return None
        return v

    def gmail_label_aliases(self) -> dict:
        """Workflow label names mapped to their configured Gmail label ids."""
        aliases = {
            "processed-by-hi": self.gmail_label_id_processed_by_hi,
            "to-summarize": self.gmail_label_id_to_summarize,
            "archive-in-3-days": self.gmail_label_id_archive_in_3_days,
            "sent-to-bookkeeping": self.gmail_label_id_sent_to_bookkeeping,
        }
        return {name: label_id for name, label_id in aliases.items() if label_id}


def require(value: str, env_name: str) -> str:
    """Return value, or raise ValueError naming the missing environment variable."""
    if not value:
        raise ValueError(f"Missing required environment variable: {env_name}")
    return value


def load_config() -> "Config":
    return Config()
